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

"""Candidate validation and cursor-prediction suppression.

ValidationHeuristics rejects edits that would look broken or pointless
when shown: no-ops, whitespace-only rewrites, edits that duplicate the
next line, and edits that merely repeat existing lines.

PredictionSuppressor decides whether a predicted cursor jump should be
offered. It only ever drops the navigation hint, never the edit.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tabflow.completion.protocol import TextDocument
from tabflow.config.settings import HeuristicSettings, HeuristicType
from tabflow.timing import Clock, get_default_clock

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_CLOSING_LINES = ("}", "]")


class InvalidReason(str, Enum):
    """Why a candidate edit was rejected."""

    NO_OP = "noOp"
    WHITESPACE_ONLY = "whitespaceOnly"
    DUPLICATING_LINE = "duplicatingLine"
    REPEATED_CONTENT = "repeatedContent"


@dataclass
class ValidationResult:
    """Outcome of validating a candidate edit."""

    valid: bool
    text: str
    reason: Optional[InvalidReason] = None


class ValidationHeuristics:
    """Checks a proposed replacement against the current document."""

    def __init__(
        self,
        settings: Optional[HeuristicSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._settings = settings or HeuristicSettings()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def settings(self) -> HeuristicSettings:
        return self._settings

    def update_settings(self, settings: HeuristicSettings) -> None:
        self._settings = settings

    def is_enabled(self, heuristic: HeuristicType) -> bool:
        return heuristic in self._settings.enabled_heuristics

    def is_valid_cpp_case(
        self,
        document: TextDocument,
        start_line: int,
        end_line_inclusive: int,
        proposed_text: str,
    ) -> ValidationResult:
        """Validate a replacement of a 1-indexed inclusive line span.

        Args:
            document: Current document snapshot
            start_line: First replaced line (1-indexed)
            end_line_inclusive: Last replaced line (1-indexed)
            proposed_text: Replacement text

        Returns:
            ValidationResult with the rejection reason, if any
        """
        if len(document.text) >= self._settings.max_file_size:
            return ValidationResult(valid=True, text=proposed_text)

        original = document.text_in_lines(start_line, end_line_inclusive)

        if self.is_enabled(HeuristicType.NO_OP) and is_no_op(original, proposed_text):
            return self._reject(InvalidReason.NO_OP, proposed_text)

        if (
            self.is_enabled(HeuristicType.WHITESPACE_ONLY)
            and not self._settings.show_whitespace_only_changes
            and is_whitespace_only_change(original, proposed_text)
        ):
            return self._reject(InvalidReason.WHITESPACE_ONLY, proposed_text)

        proposed_lines = _split_lines(proposed_text)

        if self.is_enabled(HeuristicType.DUPLICATING_LINE_AFTER_SUGGESTION) and (
            duplicates_next_line(document, end_line_inclusive, proposed_lines)
        ):
            return self._reject(InvalidReason.DUPLICATING_LINE, proposed_text)

        if self.is_enabled(HeuristicType.OUTPUT_EXTENDS_BEYOND_RANGE_AND_IS_REPEATED) and (
            repeats_existing_lines(document, start_line, end_line_inclusive, proposed_lines)
        ):
            return self._reject(InvalidReason.REPEATED_CONTENT, proposed_text)

        return ValidationResult(valid=True, text=proposed_text)

    def _reject(self, reason: InvalidReason, text: str) -> ValidationResult:
        self._logger.debug(f"Rejected candidate: {reason.value}")
        return ValidationResult(valid=False, text=text, reason=reason)


def is_no_op(original: str, proposed: str) -> bool:
    return original.strip() == proposed.strip()


def is_whitespace_only_change(original: str, proposed: str) -> bool:
    return original != proposed and (
        _WHITESPACE.sub("", original) == _WHITESPACE.sub("", proposed)
    )


def duplicates_next_line(
    document: TextDocument, end_line_inclusive: int, proposed_lines: list[str]
) -> bool:
    """Whether the edit's last line repeats the line right after the range."""
    last = next((line for line in reversed(proposed_lines) if line.strip()), None)
    if last is None or last.strip() in _CLOSING_LINES:
        return False

    # end_line_inclusive is 1-indexed, so it is the 0-indexed following line
    if end_line_inclusive >= document.line_count:
        return False
    line_after = document.line_at(end_line_inclusive)
    if not line_after.strip():
        return False
    return last == line_after


def repeats_existing_lines(
    document: TextDocument,
    start_line: int,
    end_line_inclusive: int,
    proposed_lines: list[str],
) -> bool:
    """Whether a longer-than-range edit only restates existing lines."""
    range_length = end_line_inclusive - start_line + 1
    if len(proposed_lines) <= range_length:
        return False

    compared = proposed_lines
    if len(compared) > 1 and compared[-1] == "":
        compared = compared[:-1]

    for offset, line in enumerate(compared):
        index = start_line - 1 + offset
        if index >= document.line_count:
            return False
        if line.strip() != document.line_at(index).strip():
            return False
    return True


def _split_lines(text: str) -> list[str]:
    return text.replace("\r\n", "\n").split("\n")


@dataclass
class AcceptedSuggestion:
    path: str
    line: int  # 0-indexed
    timestamp: float


@dataclass
class SuppressionResult:
    suppress: bool
    reason: Optional[str] = None


class PredictionSuppressor:
    """Decides whether a predicted cursor jump should be shown."""

    def __init__(
        self,
        settings: Optional[HeuristicSettings] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._settings = settings or HeuristicSettings()
        self._clock = clock or get_default_clock()
        self._logger = logger or logging.getLogger(__name__)
        self._accepted: deque[AcceptedSuggestion] = deque(
            maxlen=self._settings.max_recent_accepted
        )
        self._last_move_was_prediction = False

    @property
    def last_move_was_prediction(self) -> bool:
        return self._last_move_was_prediction

    def update_settings(self, settings: HeuristicSettings) -> None:
        self._settings = settings
        self._accepted = deque(self._accepted, maxlen=settings.max_recent_accepted)

    def record_accepted(self, path: str, line: int) -> None:
        """Remember an accepted suggestion at a 0-indexed line."""
        self._accepted.append(
            AcceptedSuggestion(path=path, line=line, timestamp=self._clock.now())
        )

    def mark_cursor_move_as_prediction(self) -> None:
        self._last_move_was_prediction = True

    def clear_prediction_move(self) -> None:
        self._last_move_was_prediction = False

    def reset(self) -> None:
        self._accepted.clear()
        self._last_move_was_prediction = False

    def should_suppress(
        self, target_path: str, target_line_one_indexed: int, cursor_line: int
    ) -> SuppressionResult:
        """Check a predicted jump.

        Args:
            target_path: Workspace-relative path of the target
            target_line_one_indexed: Target line (1-indexed)
            cursor_line: Current cursor line (0-indexed)

        Returns:
            SuppressionResult with the reason when suppressed
        """
        if self._last_move_was_prediction:
            return SuppressionResult(True, "last cursor move was a prediction")

        target_line = target_line_one_indexed - 1
        distance = self._settings.prediction_min_line_distance
        now = self._clock.now()
        expiry = self._settings.accepted_suggestion_expiry_ms / 1000

        for accepted in self._accepted:
            if now - accepted.timestamp > expiry:
                continue
            if not _paths_match(accepted.path, target_path):
                continue
            if abs(accepted.line - target_line) < distance:
                return SuppressionResult(True, "too close to recently accepted suggestion")

        if abs(cursor_line - target_line) < distance:
            return SuppressionResult(True, "too close to cursor")

        return SuppressionResult(False)


def _paths_match(accepted_path: str, target_path: str) -> bool:
    if not target_path:
        return True
    return accepted_path == target_path or accepted_path.endswith("/" + target_path.lstrip("/"))
