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

"""Streaming code completion engine.

This module turns editor triggers into validated suggestions from a
remote streaming completion service.

Architecture:
- AdmissionController: debounce and stale-request detection
- CompletionOrchestrator: request lifecycle, caching, follow-ups
- StreamDecoder / StreamPoller: chunk stream consumption
- ValidationHeuristics / PredictionSuppressor: candidate filtering
- CompletionBackend: boundary to the service

Usage:
    from tabflow.completion import CompletionOrchestrator, SuggestionContext

    orchestrator = CompletionOrchestrator(backend, sync, editor)
    suggestion = await orchestrator.request_suggestion(
        SuggestionContext(document=doc, position=Position(line=9, character=3))
    )
    if suggestion:
        print(suggestion.text)
"""

from tabflow.completion.admission import (
    AdmissionController,
    AdmissionTicket,
    CancellationSignal,
    RequestEntry,
)
from tabflow.completion.backend import (
    BufferedCompletionBackend,
    CompletionBackend,
    StreamOptions,
)
from tabflow.completion.cache import (
    CachedSuggestion,
    FollowupSession,
    FusedCursorPrediction,
    NextAction,
    NextEdit,
    RequestArena,
    SuggestionCache,
)
from tabflow.completion.heuristics import (
    InvalidReason,
    PredictionSuppressor,
    ValidationHeuristics,
    ValidationResult,
)
from tabflow.completion.orchestrator import (
    CompletionOrchestrator,
    EditorSession,
    ModelCapabilities,
    RequestPhase,
    SuggestionContext,
)
from tabflow.completion.protocol import (
    AdditionalFile,
    ContentChange,
    CursorPredictionTarget,
    Diagnostic,
    DiagnosticSeverity,
    DisplayHint,
    Edit,
    EditDelta,
    EndOfLine,
    LineRange,
    ModelInfo,
    Position,
    Range,
    SessionStatistics,
    SimpleRange,
    Suggestion,
    SyncRecord,
    TextDocument,
    TriggerSource,
)
from tabflow.completion.request_builder import (
    CompletionRequest,
    ControlToken,
    EditorContext,
    build_completion_request,
)
from tabflow.completion.stream import (
    BeginEdit,
    CursorPredictionChunk,
    DecodedStream,
    DoneEdit,
    ModelInfoChunk,
    PollFailure,
    PollResult,
    PollState,
    PollSuccess,
    RangeToReplace,
    StreamChunk,
    StreamDecoder,
    StreamPoller,
    Terminator,
    TextChunk,
)
from tabflow.completion.triggers import DiagnosticsTracker, TriggerPolicy

__all__ = [
    # Protocol types
    "AdditionalFile",
    "ContentChange",
    "CursorPredictionTarget",
    "Diagnostic",
    "DiagnosticSeverity",
    "DisplayHint",
    "Edit",
    "EditDelta",
    "EndOfLine",
    "LineRange",
    "ModelInfo",
    "Position",
    "Range",
    "SessionStatistics",
    "SimpleRange",
    "Suggestion",
    "SyncRecord",
    "TextDocument",
    "TriggerSource",
    # Admission
    "AdmissionController",
    "AdmissionTicket",
    "CancellationSignal",
    "RequestEntry",
    # Stream
    "BeginEdit",
    "CursorPredictionChunk",
    "DecodedStream",
    "DoneEdit",
    "ModelInfoChunk",
    "PollFailure",
    "PollResult",
    "PollState",
    "PollSuccess",
    "RangeToReplace",
    "StreamChunk",
    "StreamDecoder",
    "StreamPoller",
    "Terminator",
    "TextChunk",
    # Backend
    "BufferedCompletionBackend",
    "CompletionBackend",
    "StreamOptions",
    # Requests
    "CompletionRequest",
    "ControlToken",
    "EditorContext",
    "build_completion_request",
    # Validation
    "InvalidReason",
    "PredictionSuppressor",
    "ValidationHeuristics",
    "ValidationResult",
    # Caching
    "CachedSuggestion",
    "FollowupSession",
    "FusedCursorPrediction",
    "NextAction",
    "NextEdit",
    "RequestArena",
    "SuggestionCache",
    # Triggers
    "DiagnosticsTracker",
    "TriggerPolicy",
    # Orchestration
    "CompletionOrchestrator",
    "EditorSession",
    "ModelCapabilities",
    "RequestPhase",
    "SuggestionContext",
]
