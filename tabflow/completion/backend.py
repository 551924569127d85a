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

"""Completion backend interface and buffered base implementation.

The backend is the boundary to the remote completion service. Transport
and wire encoding live behind it; the engine only sees chunks, poll
results and sync calls.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from tabflow.completion.admission import CancellationSignal
from tabflow.completion.protocol import ModelInfo, SyncRecord
from tabflow.completion.request_builder import CompletionRequest
from tabflow.completion.stream import (
    PollFailure,
    PollResult,
    PollSuccess,
    StreamChunk,
    Terminator,
)

logger = logging.getLogger(__name__)


@dataclass
class StreamOptions:
    """Per-stream metadata passed to the backend."""

    request_id: str
    start_time: float
    signal: CancellationSignal = field(default_factory=CancellationSignal)


@runtime_checkable
class CompletionBackend(Protocol):
    """Protocol for the remote completion service.

    Streams are started with stream_start() and drained with repeated
    poll_chunks() calls. Document sync uses full uploads or incremental
    delta batches.
    """

    async def stream_start(self, request: CompletionRequest, options: StreamOptions) -> None:
        """Start a completion stream for a request."""
        ...

    async def poll_chunks(self, request_id: str) -> PollResult:
        """Return chunks produced since the previous poll."""
        ...

    def cancel(self, request_id: str) -> None:
        """Abort a stream on the service side."""
        ...

    async def upload_full_file(self, path: str, content: str, version: int, sha256: str) -> None:
        """Replace the service's copy of a document.

        Raises:
            BackendError: If the upload was not acknowledged
        """
        ...

    async def sync_incremental(
        self, path: str, version: int, records: list[SyncRecord], sha256: str
    ) -> None:
        """Apply queued deltas to the service's copy of a document.

        Raises:
            BackendError: If the deltas were not acknowledged
        """
        ...


@dataclass
class _StreamBuffer:
    chunks: list[StreamChunk] = field(default_factory=list)
    model_info: Optional[ModelInfo] = None
    failure: Optional[str] = None


class BufferedCompletionBackend(ABC):
    """Base class for backends whose transport pushes chunks asynchronously.

    The transport calls push_chunks()/fail_stream() as data arrives;
    poll_chunks() hands over whatever has accumulated since the last poll.
    Subclasses implement the transport calls.
    """

    def __init__(self) -> None:
        self._buffers: dict[str, _StreamBuffer] = {}

    @abstractmethod
    async def open_stream(self, request: CompletionRequest, options: StreamOptions) -> None:
        """Send the request over the transport."""
        ...

    @abstractmethod
    def close_stream(self, request_id: str) -> None:
        """Abort the transport stream."""
        ...

    @abstractmethod
    async def upload_full_file(self, path: str, content: str, version: int, sha256: str) -> None:
        ...

    @abstractmethod
    async def sync_incremental(
        self, path: str, version: int, records: list[SyncRecord], sha256: str
    ) -> None:
        ...

    async def stream_start(self, request: CompletionRequest, options: StreamOptions) -> None:
        self._buffers[options.request_id] = _StreamBuffer()
        await self.open_stream(request, options)

    def push_chunks(
        self,
        request_id: str,
        chunks: list[StreamChunk],
        model_info: Optional[ModelInfo] = None,
    ) -> None:
        """Buffer chunks received from the transport."""
        buffer = self._buffers.get(request_id)
        if buffer is None:
            logger.debug(f"Dropping chunks for unknown stream {request_id}")
            return
        buffer.chunks.extend(chunks)
        if model_info is not None:
            buffer.model_info = model_info

    def fail_stream(self, request_id: str, reason: str) -> None:
        """Record a transport failure for a stream."""
        buffer = self._buffers.get(request_id)
        if buffer is not None:
            buffer.failure = reason

    async def poll_chunks(self, request_id: str) -> PollResult:
        buffer = self._buffers.get(request_id)
        if buffer is None:
            return PollFailure(reason=f"unknown stream {request_id}")
        if buffer.failure is not None:
            del self._buffers[request_id]
            return PollFailure(reason=buffer.failure)

        result = PollSuccess(chunks=buffer.chunks, model_info=buffer.model_info)
        buffer.chunks = []
        buffer.model_info = None
        if any(isinstance(chunk, Terminator) for chunk in result.chunks):
            del self._buffers[request_id]
        return result

    def cancel(self, request_id: str) -> None:
        self._buffers.pop(request_id, None)
        self.close_stream(request_id)

    def forget(self, request_id: str) -> None:
        """Release the buffer of a finished stream."""
        self._buffers.pop(request_id, None)

    @property
    def open_streams(self) -> list[str]:
        return list(self._buffers)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(streams={len(self._buffers)})"
