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

"""Tests for trigger gating, snoozing, diagnostics tracking and retries."""

import pytest

from tabflow.completion.protocol import Diagnostic, DiagnosticSeverity, Position, Range, TriggerSource
from tabflow.completion.triggers import DiagnosticsTracker, TriggerPolicy
from tabflow.timing import with_retry
from tests.helpers import DOC_URI


def error(line: int, message: str = "undefined name") -> Diagnostic:
    return Diagnostic(message=message, range=Range(Position(line, 0), Position(line, 5)))


class TestTriggerPolicy:
    """Tests for TriggerPolicy.allows."""

    def test_typing_is_allowed(self, clock):
        assert TriggerPolicy(clock=clock).allows(TriggerSource.TYPING, DOC_URI, 3)

    def test_rejection_cooldown_blocks_automatic_triggers(self, clock):
        policy = TriggerPolicy(clock=clock)
        policy.record_rejection()

        assert not policy.allows(TriggerSource.EDITOR_CHANGE, DOC_URI, 3)
        assert policy.allows(TriggerSource.TYPING, DOC_URI, 3)

        clock.advance(5.1)
        assert policy.allows(TriggerSource.EDITOR_CHANGE, DOC_URI, 3)

    def test_line_change_window_after_edit(self, clock):
        policy = TriggerPolicy(clock=clock)
        policy.record_edit(DOC_URI)
        clock.advance(11)
        assert not policy.allows(TriggerSource.LINE_CHANGE, DOC_URI, 3)

    def test_same_line_cooldown(self, clock):
        policy = TriggerPolicy(clock=clock)
        policy.record_edit(DOC_URI)

        assert policy.allows(TriggerSource.LINE_CHANGE, DOC_URI, 3)
        assert not policy.allows(TriggerSource.LINE_CHANGE, DOC_URI, 3)
        assert policy.allows(TriggerSource.LINE_CHANGE, DOC_URI, 4)

        clock.advance(6)
        policy.record_edit(DOC_URI)
        assert policy.allows(TriggerSource.LINE_CHANGE, DOC_URI, 3)

    def test_forget_document(self, clock):
        policy = TriggerPolicy(clock=clock)
        policy.record_edit(DOC_URI)
        policy.forget_document(DOC_URI)
        assert not policy.allows(TriggerSource.LINE_CHANGE, DOC_URI, 3)


class TestSnooze:
    """Tests for snoozing suggestions."""

    def test_snooze_blocks_all_but_manual(self, clock):
        policy = TriggerPolicy(clock=clock)
        policy.snooze(10)

        assert policy.is_snoozing
        assert policy.remaining_snooze_minutes == 10
        assert not policy.allows(TriggerSource.TYPING, DOC_URI, 0)
        assert policy.allows(TriggerSource.MANUAL, DOC_URI, 0)

    def test_snooze_expires(self, clock):
        policy = TriggerPolicy(clock=clock)
        policy.snooze(1)
        clock.advance(61)

        assert not policy.is_snoozing
        assert policy.remaining_snooze_minutes == 0

    def test_cancel_snooze(self, clock):
        policy = TriggerPolicy(clock=clock)
        policy.snooze(5)
        policy.cancel_snooze()
        assert policy.allows(TriggerSource.TYPING, DOC_URI, 0)


class TestDiagnosticsTracker:
    """Tests for new-error detection."""

    def test_new_error_is_reported_once(self):
        tracker = DiagnosticsTracker()
        assert tracker.update(DOC_URI, [error(3)])
        assert not tracker.update(DOC_URI, [error(3)])

    def test_warnings_are_ignored(self):
        tracker = DiagnosticsTracker()
        warning = Diagnostic(
            message="unused", range=Range(Position(1, 0), Position(1, 2)), severity=DiagnosticSeverity.WARNING
        )
        assert not tracker.update(DOC_URI, [warning])

    def test_resolved_error_reappearing_counts_as_new(self):
        tracker = DiagnosticsTracker()
        tracker.update(DOC_URI, [error(3)])
        tracker.update(DOC_URI, [])
        assert tracker.update(DOC_URI, [error(3)])


class TestWithRetry:
    """Tests for the fixed-delay retry helper."""

    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self, clock):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        result = await with_retry(flaky, retries=2, delay_ms=150, clock=clock)

        assert result == "ok"
        assert clock.sleeps == [pytest.approx(0.15)] * 2

    @pytest.mark.asyncio
    async def test_reraises_when_exhausted(self, clock):
        async def broken():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await with_retry(broken, retries=1, delay_ms=10, clock=clock)
        assert len(clock.sleeps) == 1
