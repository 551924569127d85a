# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for settings and server tuning."""

import logging

import pytest
from pydantic import ValidationError

from tabflow.config.settings import (
    ConfigProvider,
    HeuristicType,
    ServerConfig,
    TabSettings,
)


class TestDefaults:
    """Default values of the settings models."""

    def test_timing_defaults(self):
        settings = TabSettings()
        assert settings.debounce.client_debounce_ms == 25
        assert settings.debounce.total_debounce_ms == 60
        assert settings.debounce.max_request_age_ms == 10_000
        assert settings.stream.max_retries == 2
        assert settings.stream.retry_delay_ms == 150

    def test_sync_defaults(self):
        sync = TabSettings().sync
        assert sync.max_queue_length == 30
        assert sync.max_version_lag == 10
        assert sync.min_success_streak == 2
        assert sync.drift_threshold == 100

    def test_default_heuristics_enable_every_check(self):
        assert TabSettings().heuristics.enabled_heuristics == list(HeuristicType)


class TestConfigProvider:
    """Tests for ConfigProvider updates and listeners."""

    def test_update_section_notifies(self):
        config = ConfigProvider()
        seen = []
        config.on_change(seen.append)

        settings = config.update("debounce", client_debounce_ms=40)

        assert settings.debounce.client_debounce_ms == 40
        assert seen == [settings]

    def test_update_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown settings section"):
            ConfigProvider().update("nonexistent", value=1)

    def test_update_rejects_invalid_value(self):
        config = ConfigProvider()
        with pytest.raises(ValidationError):
            config.update("debounce", client_debounce_ms=-1)
        assert config.settings.debounce.client_debounce_ms == 25

    def test_unsubscribe(self):
        config = ConfigProvider()
        seen = []
        unsubscribe = config.on_change(seen.append)
        unsubscribe()

        config.update("sync", drift_threshold=50)
        assert seen == []

    def test_failing_listener_does_not_block_others(self):
        config = ConfigProvider()
        seen = []

        def broken(settings):
            raise RuntimeError("listener bug")

        config.on_change(broken)
        config.on_change(seen.append)
        config.update("stream", max_retries=1)

        assert len(seen) == 1


class TestServerConfig:
    """Tests for applying the service's tuning response."""

    def test_applies_debounce_and_hash_percent(self):
        config = ConfigProvider()
        settings = config.apply_server_config(
            ServerConfig(client_debounce_ms=30, global_debounce_ms=90, check_filesync_hash_percent=0.5)
        )

        assert settings.debounce.client_debounce_ms == 30
        assert settings.debounce.total_debounce_ms == 90
        assert settings.sync.check_hash_percent == 0.5
        assert config.server_config.client_debounce_ms == 30

    def test_heuristics_keep_basic_checks(self):
        config = ConfigProvider()
        settings = config.apply_server_config(
            ServerConfig(heuristics=["OUTPUT_EXTENDS_BEYOND_RANGE_AND_IS_REPEATED"])
        )

        assert settings.heuristics.enabled_heuristics == [
            HeuristicType.NO_OP,
            HeuristicType.WHITESPACE_ONLY,
            HeuristicType.OUTPUT_EXTENDS_BEYOND_RANGE_AND_IS_REPEATED,
        ]

    def test_unsupported_heuristics_are_ignored(self, caplog):
        config = ConfigProvider()
        with caplog.at_level(logging.WARNING, logger="tabflow.config.settings"):
            settings = config.apply_server_config(
                ServerConfig(heuristics=["NO_OP", "REVERTING_USER_CHANGE", "SOMETHING_NEW"])
            )

        assert settings.heuristics.enabled_heuristics == [
            HeuristicType.NO_OP,
            HeuristicType.WHITESPACE_ONLY,
        ]
        assert "Ignoring unsupported server heuristic: REVERTING_USER_CHANGE" in caplog.text

    def test_is_on_toggles_suggestions(self):
        config = ConfigProvider()
        assert not config.apply_server_config(ServerConfig(is_on=False)).flags.enable_inline_suggestions

    def test_missing_values_leave_settings_alone(self):
        config = ConfigProvider()
        before = config.settings
        after = config.apply_server_config(ServerConfig())

        assert after.debounce == before.debounce
        assert after.heuristics == before.heuristics
