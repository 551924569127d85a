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

"""Completion stream chunks, decoding and polling.

The completion service answers with an ordered sequence of chunks.
StreamDecoder folds them into Edits; StreamPoller pulls them from the
backend until a Terminator, a failure, a timeout or cancellation.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Iterable, Optional, Union

from tabflow.completion.protocol import CursorPredictionTarget, Edit, LineRange, ModelInfo
from tabflow.errors import StreamFailureError, StreamTimeoutError
from tabflow.timing import Clock

if TYPE_CHECKING:
    from tabflow.completion.admission import CancellationSignal
    from tabflow.completion.backend import CompletionBackend

logger = logging.getLogger(__name__)


# =============================================================================
# Chunks
# =============================================================================


@dataclass(frozen=True)
class TextChunk:
    """Text to append to the current edit."""

    text: str


@dataclass(frozen=True)
class RangeToReplace:
    """Sets the line span the current edit replaces."""

    range: LineRange
    binding_id: Optional[str] = None
    trim_leading: bool = False


@dataclass(frozen=True)
class BeginEdit:
    """Marks the start of a new edit segment."""


@dataclass(frozen=True)
class DoneEdit:
    """Marks the end of the current edit."""


@dataclass(frozen=True)
class CursorPredictionChunk:
    """Carries a predicted next cursor location."""

    target: CursorPredictionTarget


@dataclass(frozen=True)
class ModelInfoChunk:
    """Carries capabilities of the serving model."""

    info: ModelInfo


@dataclass(frozen=True)
class Terminator:
    """Ends the stream."""


StreamChunk = Union[
    TextChunk,
    RangeToReplace,
    BeginEdit,
    DoneEdit,
    CursorPredictionChunk,
    ModelInfoChunk,
    Terminator,
]


@dataclass
class PollSuccess:
    """Chunks produced since the last poll."""

    chunks: list[StreamChunk] = field(default_factory=list)
    model_info: Optional[ModelInfo] = None


@dataclass
class PollFailure:
    """The stream failed on the service side."""

    reason: str


PollResult = Union[PollSuccess, PollFailure]


# =============================================================================
# Decoding
# =============================================================================


@dataclass
class DecodedStream:
    """Everything extracted from one completion stream."""

    edits: list[Edit] = field(default_factory=list)
    cursor_prediction: Optional[CursorPredictionTarget] = None
    model_info: Optional[ModelInfo] = None
    terminated: bool = False


class StreamDecoder:
    """Folds stream chunks into edits.

    Text accumulates in a buffer until a DoneEdit boundary, at which point
    buffer and range become one Edit. Text that never received a range is
    discarded, as is a range that never received text. BeginEdit flushes an edit already in progress but never
    stops decoding; only a Terminator does.
    """

    def __init__(self) -> None:
        self._result = DecodedStream()
        self._buffer = ""
        self._range: Optional[LineRange] = None
        self._binding_id: Optional[str] = None
        self._trim_leading = False

    @property
    def terminated(self) -> bool:
        return self._result.terminated

    def feed(self, chunk: StreamChunk) -> bool:
        """Consume one chunk.

        Returns:
            False once the stream has terminated
        """
        if self._result.terminated:
            return False

        if isinstance(chunk, TextChunk):
            self._buffer += chunk.text
        elif isinstance(chunk, RangeToReplace):
            self._range = chunk.range
            self._binding_id = chunk.binding_id
            self._trim_leading = chunk.trim_leading
        elif isinstance(chunk, (BeginEdit, DoneEdit)):
            self._flush()
        elif isinstance(chunk, CursorPredictionChunk):
            self._result.cursor_prediction = chunk.target
        elif isinstance(chunk, ModelInfoChunk):
            self._result.model_info = chunk.info
        elif isinstance(chunk, Terminator):
            self._result.terminated = True
            return False
        else:
            raise TypeError(f"Unknown stream chunk: {type(chunk).__name__}")
        return True

    def finish(self) -> DecodedStream:
        """Flush any pending edit and return the decoded stream."""
        self._flush()
        return self._result

    def _flush(self) -> None:
        if self._range is None or not self._buffer:
            if self._buffer:
                logger.debug(f"Discarding {len(self._buffer)} chars of text without a range")
            self._reset()
            return

        text = self._buffer
        if self._trim_leading:
            if text.startswith("\r\n"):
                text = text[2:]
            elif text.startswith("\n"):
                text = text[1:]

        self._result.edits.append(
            Edit(
                range=self._range,
                text=text,
                binding_id=self._binding_id,
                trim_leading=self._trim_leading,
            )
        )
        self._reset()

    def _reset(self) -> None:
        self._buffer = ""
        self._range = None
        self._binding_id = None
        self._trim_leading = False


def decode_chunks(chunks: Iterable[StreamChunk]) -> DecodedStream:
    """Decode a complete chunk sequence."""
    decoder = StreamDecoder()
    for chunk in chunks:
        if not decoder.feed(chunk):
            break
    return decoder.finish()


# =============================================================================
# Polling
# =============================================================================


class PollState(str, Enum):
    """Lifecycle of a StreamPoller."""

    IDLE = "idle"
    POLLING = "polling"
    DRAINED = "drained"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StreamPoller:
    """Pulls chunks for one request until the stream ends.

    Cancellation is checked before and after every poll and between
    chunks. Empty polls wait poll_interval_ms on the injected clock.
    """

    def __init__(
        self,
        backend: "CompletionBackend",
        request_id: str,
        signal: "CancellationSignal",
        clock: Clock,
        poll_interval_ms: float = 5,
        timeout_ms: float = 10_000,
        logger: Optional[logging.Logger] = None,
    ):
        self._backend = backend
        self._request_id = request_id
        self._signal = signal
        self._clock = clock
        self._poll_interval = poll_interval_ms / 1000
        self._timeout = timeout_ms / 1000
        self._logger = logger or logging.getLogger(__name__)
        self.state = PollState.IDLE
        self.polls = 0

    async def chunks(self) -> AsyncIterator[StreamChunk]:
        """Yield chunks in order.

        Raises:
            StreamFailureError: If the service reports failure
            StreamTimeoutError: If nothing arrives before the deadline
        """
        self.state = PollState.POLLING
        last_progress = self._clock.now()

        while True:
            if self._signal.cancelled:
                self._cancel()
                return

            result = await self._backend.poll_chunks(self._request_id)
            self.polls += 1

            if self._signal.cancelled:
                self._cancel()
                return

            if isinstance(result, PollFailure):
                self.state = PollState.FAILED
                raise StreamFailureError(result.reason, self._request_id)

            if result.model_info is not None:
                yield ModelInfoChunk(result.model_info)

            for chunk in result.chunks:
                if self._signal.cancelled:
                    self._cancel()
                    return
                yield chunk
                if isinstance(chunk, Terminator):
                    self.state = PollState.DRAINED
                    return

            if result.chunks:
                last_progress = self._clock.now()
                continue

            if self._clock.now() - last_progress >= self._timeout:
                self.state = PollState.FAILED
                raise StreamTimeoutError("no terminator before timeout", self._request_id)
            await self._clock.sleep(self._poll_interval)

    def _cancel(self) -> None:
        self.state = PollState.CANCELLED
        self._logger.debug(f"Stopped polling {self._request_id}: {self._signal.reason}")
