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

"""Data types shared by the completion engine and document sync.

Positions follow the LSP convention (0-indexed line and character).
Line ranges coming from the completion service are 1-indexed and
inclusive, which is kept explicit in the type names.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EndOfLine(str, Enum):
    """Line terminator used by a document."""

    LF = "\n"
    CRLF = "\r\n"


class TriggerSource(str, Enum):
    """Why a completion request was started."""

    TYPING = "typing"
    LINE_CHANGE = "line_change"
    EDITOR_CHANGE = "editor_change"
    LINTER_ERRORS = "linter_errors"
    MANUAL = "manual"
    ACCEPTANCE = "acceptance"  # Re-request after accepting a multi-edit suggestion
    CURSOR_PREDICTION = "cursor_prediction"

    @property
    def is_automatic(self) -> bool:
        """Whether the trigger came from background heuristics rather than typing."""
        return self in (
            TriggerSource.LINE_CHANGE,
            TriggerSource.EDITOR_CHANGE,
            TriggerSource.LINTER_ERRORS,
        )


class DisplayHint(str, Enum):
    """How the editor should render a suggestion."""

    GHOST_TEXT = "ghost_text"
    INLINE_EDIT = "inline_edit"
    JUMP = "jump"


class DiagnosticSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"
    HINT = "hint"


@dataclass(frozen=True)
class Position:
    """A position in a text document (0-indexed)."""

    line: int
    character: int


@dataclass(frozen=True)
class Range:
    """A range in a text document."""

    start: Position
    end: Position


@dataclass(frozen=True)
class LineRange:
    """A 1-indexed, inclusive span of whole lines."""

    start_line_number: int
    end_line_number_inclusive: int

    @property
    def line_count(self) -> int:
        return self.end_line_number_inclusive - self.start_line_number + 1


@dataclass(frozen=True)
class SimpleRange:
    """A 1-indexed range with columns, as sent in sync deltas."""

    start_line_number: int
    start_column: int
    end_line_number_inclusive: int
    end_column: int

    @classmethod
    def from_range(cls, rng: Range) -> "SimpleRange":
        return cls(
            start_line_number=rng.start.line + 1,
            start_column=rng.start.character + 1,
            end_line_number_inclusive=rng.end.line + 1,
            end_column=rng.end.character + 1,
        )


@dataclass
class TextDocument:
    """Snapshot of an open editor buffer.

    The version counter increases by one for every local edit event.
    """

    uri: str
    text: str
    version: int
    path: str = ""  # Workspace-relative path
    eol: EndOfLine = EndOfLine.LF
    language_id: str = ""

    def __post_init__(self) -> None:
        if not self.path:
            self.path = self.uri

    @property
    def lines(self) -> list[str]:
        return self.text.split(self.eol.value)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def line_at(self, index: int) -> str:
        """Get a line by 0-indexed position, or an empty string if out of range."""
        lines = self.lines
        if 0 <= index < len(lines):
            return lines[index]
        return ""

    def text_in_lines(self, start_line_number: int, end_line_number_inclusive: int) -> str:
        """Get the text of a 1-indexed inclusive line span."""
        lines = self.lines[start_line_number - 1 : end_line_number_inclusive]
        return self.eol.value.join(lines)

    def to_range(self, line_range: LineRange) -> Range:
        """Convert a 1-indexed line span into a character range over whole lines."""
        last = max(self.line_count - 1, 0)
        start_line = min(max(line_range.start_line_number - 1, 0), last)
        end_line = min(max(line_range.end_line_number_inclusive - 1, start_line), last)
        return Range(
            start=Position(line=start_line, character=0),
            end=Position(line=end_line, character=len(self.line_at(end_line))),
        )


@dataclass
class ContentChange:
    """A single content change reported by the editor."""

    range: Range
    range_offset: int
    range_length: int
    text: str


@dataclass
class EditDelta:
    """One local mutation, expressed against the pre-edit buffer."""

    start_offset: int
    end_offset: int
    replaced_text: str
    change_length: int
    range: SimpleRange

    @classmethod
    def from_change(cls, change: ContentChange) -> "EditDelta":
        return cls(
            start_offset=change.range_offset,
            end_offset=change.range_offset + change.range_length,
            replaced_text=change.text,
            change_length=change.range_length,
            range=SimpleRange.from_range(change.range),
        )


@dataclass
class SyncRecord:
    """A queued edit event awaiting transmission to the remote copy."""

    model_version: int
    path: str
    updates: list[EditDelta] = field(default_factory=list)
    expected_length: int = 0


@dataclass
class Diagnostic:
    """A linter or compiler diagnostic attached to a document."""

    message: str
    range: Range
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR
    source: Optional[str] = None


@dataclass
class AdditionalFile:
    """Context from another open or recently viewed file."""

    path: str
    is_open: bool = True
    visible_range_content: list[str] = field(default_factory=list)
    start_line_number_one_indexed: list[int] = field(default_factory=list)
    last_viewed_at: Optional[float] = None


@dataclass(frozen=True)
class CursorPredictionTarget:
    """Where the model predicts the cursor should go next."""

    relative_path: str
    line_number_one_indexed: int
    expected_content: str = ""
    should_retrigger: bool = False


@dataclass(frozen=True)
class ModelInfo:
    """Capabilities reported by the model serving a stream."""

    is_fused_cursor_prediction_model: bool = False
    is_multidiff_model: bool = False
    model_name: Optional[str] = None


@dataclass
class Edit:
    """A decoded replacement of a line span."""

    range: LineRange
    text: str
    binding_id: Optional[str] = None
    trim_leading: bool = False


@dataclass
class Suggestion:
    """A completion candidate ready to be shown by the editor."""

    text: str
    range: Range
    request_id: str
    uri: str
    document_version: int
    binding_id: Optional[str] = None
    display_hint: Optional[DisplayHint] = None
    is_inline_edit: bool = False
    cursor_prediction_target: Optional[CursorPredictionTarget] = None
    next_action_id: Optional[str] = None
    line_range: Optional[LineRange] = None

    @property
    def is_jump_hint(self) -> bool:
        return self.display_hint == DisplayHint.JUMP


@dataclass
class SessionStatistics:
    """Counters for a completion session."""

    total_triggers: int = 0
    suggestions_returned: int = 0
    suggestions_shown: int = 0
    accepts: int = 0
    partial_accepts: int = 0
    rejects: int = 0
    accepted_characters: int = 0
    prediction_jumps: int = 0
    cache_hits: int = 0
    followup_hits: int = 0
    cache_misses: int = 0
    debounced_requests: int = 0
    superseded_requests: int = 0
    cancelled_requests: int = 0
    failed_requests: int = 0
    invalid_suggestions: int = 0
    generations: int = 0
    total_generation_ms: float = 0.0

    @property
    def avg_generation_ms(self) -> float:
        """Average stream generation time."""
        if self.generations == 0:
            return 0.0
        return self.total_generation_ms / self.generations

    @property
    def accept_rate(self) -> float:
        """Accepted suggestions over shown suggestions."""
        if self.suggestions_shown == 0:
            return 0.0
        return self.accepts / self.suggestions_shown

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_triggers": self.total_triggers,
            "suggestions_returned": self.suggestions_returned,
            "suggestions_shown": self.suggestions_shown,
            "accepts": self.accepts,
            "partial_accepts": self.partial_accepts,
            "rejects": self.rejects,
            "accepted_characters": self.accepted_characters,
            "prediction_jumps": self.prediction_jumps,
            "cache_hits": self.cache_hits,
            "followup_hits": self.followup_hits,
            "cache_misses": self.cache_misses,
            "debounced_requests": self.debounced_requests,
            "superseded_requests": self.superseded_requests,
            "cancelled_requests": self.cancelled_requests,
            "failed_requests": self.failed_requests,
            "invalid_suggestions": self.invalid_suggestions,
            "avg_generation_ms": round(self.avg_generation_ms, 2),
            "accept_rate": round(self.accept_rate, 3),
        }
