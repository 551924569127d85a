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

"""Tests for stream decoding and polling."""

from collections import deque

import pytest

from tabflow.completion.admission import CancellationSignal
from tabflow.completion.protocol import CursorPredictionTarget, LineRange, ModelInfo
from tabflow.completion.stream import (
    BeginEdit,
    CursorPredictionChunk,
    DoneEdit,
    ModelInfoChunk,
    PollFailure,
    PollState,
    PollSuccess,
    RangeToReplace,
    StreamDecoder,
    StreamPoller,
    Terminator,
    TextChunk,
    decode_chunks,
)
from tabflow.errors import StreamFailureError, StreamTimeoutError


class TestStreamDecoder:
    """Tests for folding chunks into edits."""

    def test_two_edits_in_order(self):
        decoded = decode_chunks(
            [
                BeginEdit(),
                RangeToReplace(LineRange(1, 2)),
                TextChunk("a"),
                TextChunk("b"),
                DoneEdit(),
                BeginEdit(),
                RangeToReplace(LineRange(5, 5)),
                TextChunk("c"),
                DoneEdit(),
                Terminator(),
            ]
        )

        assert [(e.range, e.text) for e in decoded.edits] == [
            (LineRange(1, 2), "ab"),
            (LineRange(5, 5), "c"),
        ]
        assert decoded.terminated

    def test_text_without_range_is_discarded(self):
        decoded = decode_chunks([TextChunk("orphan"), DoneEdit(), Terminator()])
        assert decoded.edits == []

    def test_range_without_text_is_discarded(self):
        decoded = decode_chunks([RangeToReplace(LineRange(3, 3)), DoneEdit(), Terminator()])
        assert decoded.edits == []

    def test_trim_leading_newline(self):
        decoded = decode_chunks(
            [
                RangeToReplace(LineRange(2, 2), trim_leading=True),
                TextChunk("\r\nfoo()"),
                DoneEdit(),
                RangeToReplace(LineRange(4, 4), trim_leading=True),
                TextChunk("\nbar()"),
                DoneEdit(),
                Terminator(),
            ]
        )
        assert [e.text for e in decoded.edits] == ["foo()", "bar()"]
        assert all(e.trim_leading for e in decoded.edits)

    def test_binding_id_is_carried(self):
        decoded = decode_chunks(
            [RangeToReplace(LineRange(1, 1), binding_id="b-1"), TextChunk("x"), DoneEdit()]
        )
        assert decoded.edits[0].binding_id == "b-1"

    def test_begin_edit_flushes_pending_edit(self):
        decoded = decode_chunks(
            [RangeToReplace(LineRange(1, 1)), TextChunk("x"), BeginEdit(), Terminator()]
        )
        assert [e.text for e in decoded.edits] == ["x"]

    def test_finish_flushes_unterminated_edit(self):
        decoder = StreamDecoder()
        decoder.feed(RangeToReplace(LineRange(7, 8)))
        decoder.feed(TextChunk("tail"))

        decoded = decoder.finish()
        assert decoded.edits[0].range == LineRange(7, 8)
        assert not decoded.terminated

    def test_chunks_after_terminator_are_ignored(self):
        decoder = StreamDecoder()
        assert decoder.feed(Terminator()) is False
        assert decoder.feed(RangeToReplace(LineRange(1, 1))) is False
        assert decoder.feed(TextChunk("late")) is False
        assert decoder.finish().edits == []

    def test_cursor_prediction_and_model_info(self):
        target = CursorPredictionTarget("src/app.py", 40)
        info = ModelInfo(is_fused_cursor_prediction_model=True, model_name="fast")
        decoded = decode_chunks([CursorPredictionChunk(target), ModelInfoChunk(info), Terminator()])

        assert decoded.cursor_prediction == target
        assert decoded.model_info == info

    def test_unknown_chunk_raises(self):
        decoder = StreamDecoder()
        with pytest.raises(TypeError):
            decoder.feed("text")


class ScriptedPolls:
    """Backend stub returning one scripted poll result per call."""

    def __init__(self, results):
        self.results = deque(results)
        self.calls = 0

    async def poll_chunks(self, request_id):
        self.calls += 1
        if self.results:
            return self.results.popleft()
        return PollSuccess()


async def collect(poller):
    return [chunk async for chunk in poller.chunks()]


class TestStreamPoller:
    """Tests for polling a stream to completion."""

    @pytest.mark.asyncio
    async def test_yields_until_terminator(self, clock):
        backend = ScriptedPolls(
            [
                PollSuccess([RangeToReplace(LineRange(1, 1)), TextChunk("a")]),
                PollSuccess(),
                PollSuccess([DoneEdit(), Terminator(), TextChunk("after")]),
            ]
        )
        poller = StreamPoller(backend, "r1", CancellationSignal(), clock)

        chunks = await collect(poller)

        assert chunks[-1] == Terminator()
        assert TextChunk("after") not in chunks
        assert poller.state == PollState.DRAINED
        assert poller.polls == 3
        assert clock.sleeps == [pytest.approx(0.005)]

    @pytest.mark.asyncio
    async def test_model_info_is_yielded_first(self, clock):
        info = ModelInfo(is_multidiff_model=True)
        backend = ScriptedPolls([PollSuccess([Terminator()], model_info=info)])

        chunks = await collect(StreamPoller(backend, "r1", CancellationSignal(), clock))

        assert chunks == [ModelInfoChunk(info), Terminator()]

    @pytest.mark.asyncio
    async def test_failure_raises(self, clock):
        backend = ScriptedPolls([PollSuccess([TextChunk("a")]), PollFailure("boom")])
        poller = StreamPoller(backend, "r1", CancellationSignal(), clock)

        with pytest.raises(StreamFailureError) as exc_info:
            await collect(poller)

        assert exc_info.value.reason == "boom"
        assert exc_info.value.request_id == "r1"
        assert poller.state == PollState.FAILED

    @pytest.mark.asyncio
    async def test_timeout_without_progress(self, clock):
        backend = ScriptedPolls([])
        poller = StreamPoller(backend, "r1", CancellationSignal(), clock, timeout_ms=50)

        with pytest.raises(StreamTimeoutError):
            await collect(poller)

        assert clock.time >= 0.05
        assert poller.state == PollState.FAILED

    @pytest.mark.asyncio
    async def test_cancelled_before_first_poll(self, clock):
        backend = ScriptedPolls([PollSuccess([Terminator()])])
        signal = CancellationSignal()
        signal.cancel("user")
        poller = StreamPoller(backend, "r1", signal, clock)

        assert await collect(poller) == []
        assert backend.calls == 0
        assert poller.state == PollState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancelled_between_chunks(self, clock):
        signal = CancellationSignal()
        backend = ScriptedPolls([PollSuccess([TextChunk("a"), TextChunk("b"), Terminator()])])
        poller = StreamPoller(backend, "r1", signal, clock)

        received = []
        async for chunk in poller.chunks():
            received.append(chunk)
            signal.cancel("user")

        assert received == [TextChunk("a")]
        assert poller.state == PollState.CANCELLED
