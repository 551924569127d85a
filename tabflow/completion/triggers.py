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

"""Trigger gating: cooldowns for automatic triggers, snoozing and new-error detection."""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from tabflow.completion.protocol import Diagnostic, DiagnosticSeverity, TriggerSource
from tabflow.config.settings import TriggerSettings
from tabflow.timing import Clock, get_default_clock

logger = logging.getLogger(__name__)


@dataclass
class _DocumentActivity:
    last_edited_at: float
    line_triggers: dict[int, float] = field(default_factory=dict)


class TriggerPolicy:
    """Decides whether a trigger may start a request.

    Manual triggers always pass, even while snoozed. Other triggers are
    blocked while snoozed. Automatic triggers respect the rejection cooldown;
    line-change triggers additionally need a recent edit in the document
    and respect a per-line cooldown.
    """

    def __init__(
        self,
        settings: Optional[TriggerSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self._settings = settings or TriggerSettings()
        self._clock = clock or get_default_clock()
        self._documents: dict[str, _DocumentActivity] = {}
        self._last_trigger_at: Optional[float] = None
        self._last_rejection_at: Optional[float] = None
        self._snooze_until: Optional[float] = None

    def update_settings(self, settings: TriggerSettings) -> None:
        self._settings = settings

    def record_edit(self, uri: str) -> None:
        now = self._clock.now()
        activity = self._documents.get(uri)
        if activity is None:
            self._documents[uri] = _DocumentActivity(last_edited_at=now)
        else:
            activity.last_edited_at = now

    def record_trigger(self) -> None:
        self._last_trigger_at = self._clock.now()

    def record_rejection(self) -> None:
        self._last_rejection_at = self._clock.now()

    def in_rejection_cooldown(self) -> bool:
        if self._last_rejection_at is None:
            return False
        elapsed = self._clock.now() - self._last_rejection_at
        return elapsed < self._settings.rejection_cooldown_ms / 1000

    def allows(self, source: TriggerSource, uri: str, line: int) -> bool:
        """Check a trigger.

        Args:
            source: Trigger source
            uri: Document uri
            line: Cursor line (0-indexed)

        Returns:
            True if a request may be started
        """
        if source == TriggerSource.MANUAL:
            return True
        if self.is_snoozing:
            return False
        if source.is_automatic and self.in_rejection_cooldown():
            logger.debug(f"Trigger {source.value} suppressed by rejection cooldown")
            return False
        if source == TriggerSource.LINE_CHANGE:
            return self._allows_line_change(uri, line)
        return True

    def forget_document(self, uri: str) -> None:
        self._documents.pop(uri, None)

    # Snooze

    @property
    def is_snoozing(self) -> bool:
        if self._snooze_until is None:
            return False
        if self._clock.now() >= self._snooze_until:
            self._snooze_until = None
            return False
        return True

    @property
    def remaining_snooze_minutes(self) -> int:
        if not self.is_snoozing:
            return 0
        return math.ceil((self._snooze_until - self._clock.now()) / 60)

    def snooze(self, minutes: float) -> None:
        self._snooze_until = self._clock.now() + minutes * 60
        logger.info(f"Suggestions snoozed for {minutes} minutes")

    def cancel_snooze(self) -> None:
        self._snooze_until = None

    def _allows_line_change(self, uri: str, line: int) -> bool:
        activity = self._documents.get(uri)
        if activity is None:
            return False
        now = self._clock.now()
        if now - activity.last_edited_at > self._settings.trigger_after_change_window_ms / 1000:
            return False
        last = activity.line_triggers.get(line)
        if last is not None and now - last < self._settings.same_line_cooldown_ms / 1000:
            return False
        activity.line_triggers[line] = now
        return True


class DiagnosticsTracker:
    """Detects newly appeared errors so they can trigger a request."""

    def __init__(self) -> None:
        self._known: dict[str, set[tuple[int, str]]] = {}

    def update(self, uri: str, diagnostics: list[Diagnostic]) -> bool:
        """Record the current diagnostics of a document.

        Returns:
            True if an error appeared that was not present before
        """
        errors = {
            (d.range.start.line, d.message)
            for d in diagnostics
            if d.severity == DiagnosticSeverity.ERROR
        }
        previous = self._known.get(uri, set())
        self._known[uri] = errors
        return bool(errors - previous)

    def forget(self, uri: str) -> None:
        self._known.pop(uri, None)
