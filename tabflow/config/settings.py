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

"""Settings for the completion engine.

All tunables live here as pydantic models so they can be adjusted at
runtime, either by the host editor or by the tuning response of the
completion service (see ServerConfig).
"""

import logging
import time
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class HeuristicType(str, Enum):
    """Candidate validation checks that can be toggled."""

    NO_OP = "NO_OP"
    WHITESPACE_ONLY = "WHITESPACE_ONLY"
    DUPLICATING_LINE_AFTER_SUGGESTION = "DUPLICATING_LINE_AFTER_SUGGESTION"
    OUTPUT_EXTENDS_BEYOND_RANGE_AND_IS_REPEATED = "OUTPUT_EXTENDS_BEYOND_RANGE_AND_IS_REPEATED"


def _default_heuristics() -> List[HeuristicType]:
    return [
        HeuristicType.NO_OP,
        HeuristicType.WHITESPACE_ONLY,
        HeuristicType.DUPLICATING_LINE_AFTER_SUGGESTION,
        HeuristicType.OUTPUT_EXTENDS_BEYOND_RANGE_AND_IS_REPEATED,
    ]


class FeatureFlags(BaseModel):
    """Feature switches for the completion engine."""

    enable_inline_suggestions: bool = Field(default=True, description="Master switch for suggestions")
    enable_cursor_prediction: bool = Field(
        default=True, description="Offer cursor jump hints predicted by the model"
    )
    trigger_in_comments: bool = Field(
        default=False, description="Allow automatic triggers on comment lines"
    )
    excluded_languages: List[str] = Field(
        default_factory=list, description="Language ids for which no request is sent"
    )
    max_document_size: int = Field(
        default=800_000, description="Documents larger than this (chars) are never completed"
    )


class DebounceSettings(BaseModel):
    """Request admission timing."""

    client_debounce_ms: int = Field(
        default=25, ge=0, description="Window in which a newer request suppresses an older one"
    )
    total_debounce_ms: int = Field(
        default=60, ge=0, description="Age under which earlier requests are reported as stale"
    )
    max_request_age_ms: int = Field(
        default=10_000, gt=0, description="Tracked requests older than this are pruned"
    )
    max_concurrent_streams: int = Field(
        default=6, ge=1, description="Streams tracked at once before the oldest is superseded"
    )


class HeuristicSettings(BaseModel):
    """Candidate validation and cursor-prediction suppression."""

    max_file_size: int = Field(
        default=1_000_000, description="Documents at or above this size skip validation"
    )
    show_whitespace_only_changes: bool = Field(
        default=False, description="Allow suggestions that only change whitespace"
    )
    enabled_heuristics: List[HeuristicType] = Field(
        default_factory=_default_heuristics, description="Checks applied to candidates"
    )
    prediction_min_line_distance: int = Field(
        default=5, ge=0, description="Jump hints closer than this many lines are suppressed"
    )
    accepted_suggestion_expiry_ms: int = Field(
        default=30_000, description="How long an accepted suggestion suppresses nearby jumps"
    )
    max_recent_accepted: int = Field(default=10, ge=1, description="Accepted suggestions remembered")


class SyncSettings(BaseModel):
    """Incremental document sync."""

    max_queue_length: int = Field(default=30, ge=1, description="Queued edit events per document")
    max_version_lag: int = Field(
        default=10, description="Largest local-vs-synced version gap that still relies on sync"
    )
    min_success_streak: int = Field(
        default=2, ge=1, description="Consecutive successful syncs required to rely on sync"
    )
    drift_threshold: int = Field(
        default=100, description="Version drift beyond which an incremental sync becomes a full upload"
    )
    sync_debounce_ms: int = Field(default=250, description="Delay before syncing after an edit")
    payload_max_retries: int = Field(
        default=8, ge=0, description="Attempts to gather a covering delta set for a request"
    )
    payload_retry_delay_ms: int = Field(default=10, description="Delay between gather attempts")
    check_hash_percent: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Probability of sending a content hash for drift checks"
    )
    schedule_on_edit: bool = Field(default=True, description="Schedule a debounced sync per edit")


class StreamSettings(BaseModel):
    """Stream consumption, retries and caching."""

    poll_interval_ms: int = Field(default=5, ge=1, description="Delay between empty polls")
    stream_timeout_ms: int = Field(
        default=10_000, description="Give up on a stream that yields nothing for this long"
    )
    max_retries: int = Field(default=2, ge=0, description="Retries for a failed stream")
    retry_delay_ms: int = Field(default=150, ge=0, description="Fixed delay between stream retries")
    cache_capacity: int = Field(default=5, ge=1, description="Suggestions kept from superseded requests")
    cache_max_version_lag: int = Field(
        default=3, ge=0, description="Versions a cached suggestion stays servable"
    )
    followup_max_version_lag: int = Field(
        default=1, ge=0, description="Versions a follow-up queue survives"
    )
    content_radius_lines: int = Field(
        default=300, description="Lines kept on each side of the cursor when sending full content"
    )
    max_diagnostics: int = Field(default=5, description="Diagnostics attached to a request")
    history_size: int = Field(default=10, description="Diff history entries kept per document")


class TriggerSettings(BaseModel):
    """Automatic trigger cooldowns."""

    rejection_cooldown_ms: int = Field(
        default=5_000, description="Automatic triggers are suppressed this long after a rejection"
    )
    same_line_cooldown_ms: int = Field(
        default=5_000, description="Minimum time between line-change triggers on the same line"
    )
    trigger_after_change_window_ms: int = Field(
        default=10_000, description="Line-change triggers only fire this soon after an edit"
    )


class TabSettings(BaseModel):
    """Complete configuration of the completion engine."""

    flags: FeatureFlags = Field(default_factory=FeatureFlags)
    debounce: DebounceSettings = Field(default_factory=DebounceSettings)
    heuristics: HeuristicSettings = Field(default_factory=HeuristicSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    triggers: TriggerSettings = Field(default_factory=TriggerSettings)
    workspace_id: Optional[str] = Field(default=None, description="Stable id for the workspace")
    model_name: Optional[str] = Field(default=None, description="Requested model, server default if unset")


class ServerConfig(BaseModel):
    """Tuning values returned by the completion service."""

    fetched_at: float = Field(default_factory=time.time, description="Wall-clock fetch time")
    is_on: Optional[bool] = None
    is_ghost_text: Optional[bool] = None
    above_radius: Optional[int] = None
    below_radius: Optional[int] = None
    global_debounce_ms: Optional[int] = None
    client_debounce_ms: Optional[int] = None
    heuristics: List[str] = Field(default_factory=list)
    is_fused_cursor_prediction_model: Optional[bool] = None
    include_unchanged_lines: Optional[bool] = None
    allows_tab_chunks: Optional[bool] = None
    check_filesync_hash_percent: Optional[float] = None

    def known_heuristics(self) -> List[HeuristicType]:
        """Heuristic names from the server that this client implements."""
        known = {h.value for h in HeuristicType}
        result = []
        for name in self.heuristics:
            if name in known:
                result.append(HeuristicType(name))
            else:
                logger.warning(f"Ignoring unsupported server heuristic: {name}")
        return result


SettingsListener = Callable[[TabSettings], None]


class ConfigProvider:
    """Holds the active settings and notifies listeners on change."""

    def __init__(self, settings: Optional[TabSettings] = None):
        self._settings = settings or TabSettings()
        self._listeners: List[SettingsListener] = []
        self._server_config: Optional[ServerConfig] = None

    @property
    def settings(self) -> TabSettings:
        return self._settings

    @property
    def server_config(self) -> Optional[ServerConfig]:
        return self._server_config

    def on_change(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace(self, settings: TabSettings) -> None:
        self._settings = settings
        self._notify()

    def update(self, section: str, **changes) -> TabSettings:
        """Update fields of one settings section.

        Args:
            section: Attribute name on TabSettings (e.g. "debounce")
            **changes: Field values to change

        Returns:
            The new settings

        Raises:
            ValueError: If the section does not exist or a value is invalid
        """
        current = getattr(self._settings, section, None)
        if not isinstance(current, BaseModel):
            raise ValueError(f"Unknown settings section: {section}")
        updated = current.model_validate({**current.model_dump(), **changes})
        self._settings = self._settings.model_copy(update={section: updated})
        self._notify()
        return self._settings

    def apply_server_config(self, config: ServerConfig) -> TabSettings:
        """Apply tuning values from the completion service.

        Args:
            config: Server tuning response

        Returns:
            The new settings
        """
        self._server_config = config
        settings = self._settings

        debounce_changes = {}
        if config.client_debounce_ms is not None:
            debounce_changes["client_debounce_ms"] = config.client_debounce_ms
        if config.global_debounce_ms is not None:
            debounce_changes["total_debounce_ms"] = config.global_debounce_ms
        if debounce_changes:
            settings = settings.model_copy(
                update={"debounce": settings.debounce.model_copy(update=debounce_changes)}
            )

        if config.heuristics:
            enabled = [HeuristicType.NO_OP, HeuristicType.WHITESPACE_ONLY]
            enabled.extend(h for h in config.known_heuristics() if h not in enabled)
            settings = settings.model_copy(
                update={
                    "heuristics": settings.heuristics.model_copy(
                        update={"enabled_heuristics": enabled}
                    )
                }
            )

        if config.check_filesync_hash_percent is not None:
            settings = settings.model_copy(
                update={
                    "sync": settings.sync.model_copy(
                        update={"check_hash_percent": config.check_filesync_hash_percent}
                    )
                }
            )

        if config.is_on is not None:
            settings = settings.model_copy(
                update={
                    "flags": settings.flags.model_copy(
                        update={"enable_inline_suggestions": config.is_on}
                    )
                }
            )

        logger.info(
            f"Applied server config: client={settings.debounce.client_debounce_ms}ms "
            f"total={settings.debounce.total_debounce_ms}ms "
            f"heuristics={[h.value for h in settings.heuristics.enabled_heuristics]}"
        )
        self._settings = settings
        self._notify()
        return settings

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._settings)
            except Exception as e:
                logger.warning(f"Settings listener failed: {e}")
