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

"""Test doubles: virtual clock, scripted backend and editor."""

import asyncio
from collections import deque
from typing import Optional

from tabflow.completion.backend import BufferedCompletionBackend, StreamOptions
from tabflow.completion.protocol import (
    CursorPredictionTarget,
    Diagnostic,
    LineRange,
    Position,
    SyncRecord,
    TextDocument,
)
from tabflow.completion.request_builder import CompletionRequest, EditorContext
from tabflow.completion.stream import DoneEdit, RangeToReplace, Terminator, TextChunk
from tabflow.errors import BackendError

DOC_URI = "file:///ws/src/app.py"
DOC_PATH = "src/app.py"


class FakeClock:
    """Virtual time. sleep() advances time (unless frozen) and yields to the loop."""

    def __init__(self, start: float = 0.0, frozen: bool = False):
        self.time = start
        self.frozen = frozen
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if not self.frozen:
            self.time += max(0.0, seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.time += seconds


class FakeBackend(BufferedCompletionBackend):
    """Backend answering each stream with the next scripted chunk list."""

    def __init__(self, scripts: Optional[list[list]] = None):
        super().__init__()
        self.scripts = deque(scripts or [])
        self.requests: list[CompletionRequest] = []
        self.cancelled: list[str] = []
        self.uploads: list[tuple[str, int, str]] = []
        self.incremental: list[tuple[str, int, list[int]]] = []
        self.fail_uploads = 0
        self.fail_incremental = 0
        self.stream_failures = 0
        self.gates: dict[int, asyncio.Event] = {}
        self._stream_index: dict[str, int] = {}

    def hold(self, index: int) -> asyncio.Event:
        """Block polling of the index-th stream until the event is set."""
        gate = asyncio.Event()
        self.gates[index] = gate
        return gate

    async def wait_for_streams(self, count: int) -> None:
        for _ in range(1000):
            if len(self.requests) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} streams, got {len(self.requests)}")

    async def open_stream(self, request: CompletionRequest, options: StreamOptions) -> None:
        self._stream_index[options.request_id] = len(self.requests)
        self.requests.append(request)
        if self.stream_failures:
            self.stream_failures -= 1
            self.fail_stream(options.request_id, "stream broke")
            return
        script = self.scripts.popleft() if self.scripts else [Terminator()]
        self.push_chunks(options.request_id, list(script))

    async def poll_chunks(self, request_id: str):
        gate = self.gates.get(self._stream_index.get(request_id, -1))
        if gate is not None:
            await gate.wait()
        return await super().poll_chunks(request_id)

    def close_stream(self, request_id: str) -> None:
        self.cancelled.append(request_id)

    async def upload_full_file(self, path: str, content: str, version: int, sha256: str) -> None:
        if self.fail_uploads:
            self.fail_uploads -= 1
            raise BackendError("upload rejected")
        self.uploads.append((path, version, sha256))

    async def sync_incremental(
        self, path: str, version: int, records: list[SyncRecord], sha256: str
    ) -> None:
        if self.fail_incremental:
            self.fail_incremental -= 1
            raise BackendError("sync rejected")
        self.incremental.append((path, version, [r.model_version for r in records]))


class FakeEditor:
    """Editor session recording side effects."""

    def __init__(self) -> None:
        self.has_selection = False
        self.diagnostics: list[Diagnostic] = []
        self.navigations: list[CursorPredictionTarget] = []
        self.retriggers: list[str] = []

    def get_context(self, uri: str) -> EditorContext:
        return EditorContext(
            cursor=Position(line=0, character=0),
            has_selection=self.has_selection,
            diagnostics=list(self.diagnostics),
        )

    def navigate_to(self, target: CursorPredictionTarget) -> None:
        self.navigations.append(target)

    def retrigger(self, uri: str) -> None:
        self.retriggers.append(uri)


def make_lines(count: int = 20) -> list[str]:
    """Numbered lines; line 10 is "bar" and line 15 is "baz" (1-indexed)."""
    lines = [f"value_{i} = {i}" for i in range(1, count + 1)]
    lines[9] = "bar"
    lines[14] = "baz"
    return lines


def make_document(
    lines: Optional[list[str]] = None,
    version: int = 1,
    uri: str = DOC_URI,
    path: str = DOC_PATH,
    language_id: str = "python",
) -> TextDocument:
    return TextDocument(
        uri=uri,
        text="\n".join(lines if lines is not None else make_lines()),
        version=version,
        path=path,
        language_id=language_id,
    )


def edit_chunks(start: int, end: int, text: str, binding_id: Optional[str] = None) -> list:
    return [
        RangeToReplace(range=LineRange(start, end), binding_id=binding_id),
        TextChunk(text),
        DoneEdit(),
    ]
