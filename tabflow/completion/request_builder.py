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

"""Assembly of completion request payloads.

A request either carries the document content (windowed around the
cursor) or, when the service holds an up-to-date copy through file
sync, only the pending deltas and a content hash.
"""

import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from tabflow.completion.content import (
    calculate_sha256,
    should_send_hash,
    truncate_around_cursor,
)
from tabflow.completion.protocol import (
    AdditionalFile,
    Diagnostic,
    DiagnosticSeverity,
    LineRange,
    Position,
    SyncRecord,
    TextDocument,
    TriggerSource,
)
from tabflow.config.settings import TabSettings

if TYPE_CHECKING:
    from tabflow.sync.coordinator import SyncPayload


class ControlToken(str, Enum):
    """Request priority hint understood by the service."""

    QUIET = "quiet"
    LOUD = "loud"
    OP = "op"


@dataclass
class EditorContext:
    """Editor state collected at trigger time."""

    cursor: Position
    has_selection: bool = False
    visible_ranges: list[LineRange] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    additional_files: list[AdditionalFile] = field(default_factory=list)
    lsp_suggestions: list[str] = field(default_factory=list)


@dataclass
class CompletionRequest:
    """Payload sent to start a completion stream."""

    request_id: str
    path: str
    language_id: str
    cursor: Position
    file_version: int
    line_ending: str
    trigger_source: TriggerSource
    contents: str = ""
    contents_start_at_line: int = 0
    total_lines: int = 0
    rely_on_file_sync: bool = False
    filesync_updates: list[SyncRecord] = field(default_factory=list)
    sha256_hash: Optional[str] = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    visible_ranges: list[LineRange] = field(default_factory=list)
    additional_files: list[AdditionalFile] = field(default_factory=list)
    lsp_suggestions: list[str] = field(default_factory=list)
    diff_history: list[str] = field(default_factory=list)
    workspace_id: Optional[str] = None
    model_name: Optional[str] = None
    control_token: Optional[ControlToken] = None
    is_manual: bool = False
    time_since_request_start_ms: float = 0.0
    client_time: float = field(default_factory=time.time)


def build_completion_request(
    request_id: str,
    document: TextDocument,
    context: EditorContext,
    trigger_source: TriggerSource,
    sync_payload: "SyncPayload",
    settings: TabSettings,
    diff_history: Optional[list[str]] = None,
    stored_control_token: Optional[ControlToken] = None,
    time_since_request_start_ms: float = 0.0,
    rng: Optional[random.Random] = None,
) -> CompletionRequest:
    """Build the payload for a completion stream.

    Args:
        request_id: Admitted request id
        document: Document snapshot at request time
        context: Editor state at trigger time
        trigger_source: Why the request started
        sync_payload: Result of SyncCoordinator.get_sync_payload()
        settings: Active settings
        diff_history: Recent change snippets for the document
        stored_control_token: Control token persisted for the session
        time_since_request_start_ms: Time spent before the stream starts
        rng: Random source for hash sampling

    Returns:
        CompletionRequest ready for CompletionBackend.stream_start()
    """
    is_manual = trigger_source == TriggerSource.MANUAL
    request = CompletionRequest(
        request_id=request_id,
        path=document.path,
        language_id=document.language_id,
        cursor=context.cursor,
        file_version=document.version,
        line_ending=document.eol.value,
        trigger_source=trigger_source,
        rely_on_file_sync=sync_payload.rely_on_file_sync,
        filesync_updates=list(sync_payload.updates),
        diagnostics=select_diagnostics(context.diagnostics, settings.stream.max_diagnostics),
        visible_ranges=list(context.visible_ranges),
        additional_files=list(context.additional_files),
        lsp_suggestions=list(context.lsp_suggestions),
        diff_history=list(diff_history or []),
        workspace_id=settings.workspace_id,
        model_name=settings.model_name,
        control_token=ControlToken.OP if is_manual else stored_control_token,
        is_manual=is_manual,
        time_since_request_start_ms=time_since_request_start_ms,
    )

    if sync_payload.rely_on_file_sync:
        request.total_lines = document.line_count
    else:
        truncated = truncate_around_cursor(
            document.text,
            context.cursor.line,
            radius=settings.stream.content_radius_lines,
            eol=document.eol.value,
        )
        request.contents = truncated.contents
        request.contents_start_at_line = truncated.contents_start_at_line
        request.total_lines = truncated.total_lines

    if should_send_hash(sync_payload.rely_on_file_sync, settings.sync.check_hash_percent, rng):
        request.sha256_hash = calculate_sha256(document.text)

    return request


def select_diagnostics(diagnostics: list[Diagnostic], limit: int) -> list[Diagnostic]:
    """Errors first, then other severities, capped at limit."""
    errors = [d for d in diagnostics if d.severity == DiagnosticSeverity.ERROR]
    others = [d for d in diagnostics if d.severity != DiagnosticSeverity.ERROR]
    return (errors + others)[:limit]
