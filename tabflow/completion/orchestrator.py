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

"""Completion request lifecycle.

The orchestrator turns editor triggers into suggestions:

1. Follow-up edits queued from an earlier multi-edit response
2. Suggestions cached from superseded requests
3. A fresh request: admission, debounce, document sync, streaming,
   decoding and validation

Every request keeps running after it has been superseded by a newer
one for the same document; its result goes to the cache instead of the
editor. Only explicit user cancellation aborts a stream.
"""

import logging
import random
from collections import OrderedDict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, runtime_checkable

from tabflow.completion.admission import AdmissionController, AdmissionTicket
from tabflow.completion.backend import CompletionBackend, StreamOptions
from tabflow.completion.cache import (
    FollowupSession,
    FusedCursorPrediction,
    NextEdit,
    RequestArena,
    SuggestionCache,
)
from tabflow.completion.heuristics import PredictionSuppressor, ValidationHeuristics
from tabflow.completion.history import DocumentHistory
from tabflow.completion.protocol import (
    CursorPredictionTarget,
    DisplayHint,
    Edit,
    ModelInfo,
    Position,
    Range,
    SessionStatistics,
    Suggestion,
    TextDocument,
    TriggerSource,
)
from tabflow.completion.request_builder import (
    CompletionRequest,
    ControlToken,
    EditorContext,
    build_completion_request,
)
from tabflow.completion.stream import DecodedStream, StreamDecoder, StreamPoller
from tabflow.completion.triggers import TriggerPolicy
from tabflow.config.settings import ConfigProvider, TabSettings
from tabflow.sync.coordinator import SyncCoordinator
from tabflow.timing import Clock, get_default_clock, with_retry

logger = logging.getLogger(__name__)

_COMMENT_PREFIXES = ("//", "#")


class RequestPhase(str, Enum):
    """Lifecycle of a single request."""

    ADMITTED = "admitted"
    DEBOUNCED = "debounced"
    SYNCED = "synced"
    STREAMING = "streaming"
    VALIDATING = "validating"
    RESOLVED = "resolved"
    CACHED = "cached"
    FAILED = "failed"
    CANCELLED = "cancelled"


@runtime_checkable
class EditorSession(Protocol):
    """What the orchestrator needs from the host editor."""

    def get_context(self, uri: str) -> EditorContext:
        """Collect cursor, selection, diagnostics and other context for a document."""
        ...

    def navigate_to(self, target: CursorPredictionTarget) -> None:
        """Move the cursor to a predicted location."""
        ...

    def retrigger(self, uri: str) -> None:
        """Ask the editor to request a suggestion again."""
        ...


@dataclass
class SuggestionContext:
    """A trigger from the editor."""

    document: TextDocument
    position: Position
    trigger_source: TriggerSource = TriggerSource.TYPING


@dataclass
class ModelCapabilities:
    """Capabilities last reported by the serving model."""

    is_fused_cursor_prediction_model: bool = False
    is_multidiff_model: bool = False
    model_name: Optional[str] = None

    @property
    def supports_standalone_prediction(self) -> bool:
        return not self.is_fused_cursor_prediction_model


@dataclass
class _ActiveStream:
    request_id: str
    uri: str
    ticket: AdmissionTicket
    phase: RequestPhase = RequestPhase.ADMITTED


class CompletionOrchestrator:
    """Per-document completion state machine."""

    def __init__(
        self,
        backend: CompletionBackend,
        sync: SyncCoordinator,
        editor: EditorSession,
        config: Optional[ConfigProvider] = None,
        clock: Optional[Clock] = None,
        admission: Optional[AdmissionController] = None,
        heuristics: Optional[ValidationHeuristics] = None,
        suppressor: Optional[PredictionSuppressor] = None,
        triggers: Optional[TriggerPolicy] = None,
        history: Optional[DocumentHistory] = None,
        control_token: Optional[ControlToken] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._backend = backend
        self._sync = sync
        self._editor = editor
        self._config = config or ConfigProvider()
        self._clock = clock or get_default_clock()
        self._logger = logger or logging.getLogger(__name__)

        settings = self._config.settings
        self._admission = admission or AdmissionController(
            settings.debounce, clock=self._clock, logger=self._logger
        )
        self._heuristics = heuristics or ValidationHeuristics(settings.heuristics, logger=self._logger)
        self._suppressor = suppressor or PredictionSuppressor(
            settings.heuristics, clock=self._clock, logger=self._logger
        )
        self._triggers = triggers or TriggerPolicy(settings.triggers, clock=self._clock)
        self._history = history or DocumentHistory(settings.stream.history_size)
        self._cache = SuggestionCache(
            capacity=settings.stream.cache_capacity,
            max_version_lag=settings.stream.cache_max_version_lag,
            clock=self._clock,
        )
        self._arena = RequestArena(settings.stream.followup_max_version_lag)
        self._control_token = control_token
        self._rng = rng

        self._current: dict[str, str] = {}
        self._active: OrderedDict[str, _ActiveStream] = OrderedDict()
        self._superseded: set[str] = set()
        self._capabilities = ModelCapabilities()
        self._stats = SessionStatistics()
        self._unsubscribe: Optional[Callable[[], None]] = self._config.on_change(
            self._on_settings_changed
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> TabSettings:
        return self._config.settings

    @property
    def statistics(self) -> SessionStatistics:
        return self._stats

    def reset_statistics(self) -> None:
        self._stats = SessionStatistics()

    @property
    def model_capabilities(self) -> ModelCapabilities:
        return self._capabilities

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    @property
    def cache(self) -> SuggestionCache:
        return self._cache

    @property
    def arena(self) -> RequestArena:
        return self._arena

    @property
    def triggers(self) -> TriggerPolicy:
        return self._triggers

    @property
    def suppressor(self) -> PredictionSuppressor:
        return self._suppressor

    @property
    def history(self) -> DocumentHistory:
        return self._history

    def current_request_id(self, uri: str) -> Optional[str]:
        return self._current.get(uri)

    @property
    def active_request_ids(self) -> list[str]:
        """Streams counted against the concurrency limit."""
        return [request_id for request_id in self._active if request_id not in self._superseded]

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request_suggestion(self, context: SuggestionContext) -> Optional[Suggestion]:
        """Produce a suggestion for a trigger.

        Args:
            context: Document, cursor and trigger source

        Returns:
            Suggestion to show, or None
        """
        document = context.document
        self._stats.total_triggers += 1

        editor_context = self._editor.get_context(document.uri)
        editor_context.cursor = context.position
        if not self._is_eligible(context, editor_context):
            return None
        self._triggers.record_trigger()

        followup = self._serve_followup(context)
        if followup is not None:
            self._stats.followup_hits += 1
            return followup

        cached = self._cache.take(document.uri, document.version)
        if cached is not None:
            self._stats.cache_hits += 1
            self._logger.debug(f"Serving cached suggestion from {cached.request_id}")
            if cached.binding_id:
                self._arena.bind(cached.binding_id, cached.request_id, document.uri)
            target = cached.cursor_prediction_target
            if target is not None:
                if self._prediction_allowed(target, context.position):
                    cached.next_action_id = self._arena.register_next_action(
                        FusedCursorPrediction(request_id=cached.request_id, target=target)
                    )
                else:
                    cached.cursor_prediction_target = None
            return self._deliver(cached)
        self._stats.cache_misses += 1

        return await self._run_fresh(context, editor_context)

    async def _run_fresh(
        self, context: SuggestionContext, editor_context: EditorContext
    ) -> Optional[Suggestion]:
        document = context.document
        uri = document.uri
        ticket = self._admission.run_request()
        request_id = ticket.request_id

        self._supersede(uri, ticket.ids_to_cancel)
        self._current[uri] = request_id
        self._register_stream(_ActiveStream(request_id=request_id, uri=uri, ticket=ticket))

        try:
            if await self._admission.should_debounce(request_id):
                self._stats.debounced_requests += 1
                self._set_phase(request_id, RequestPhase.DEBOUNCED)
                return None
            if ticket.signal.cancelled:
                return None

            await self._sync.prepare_document(document)
            payload = await self._sync.get_sync_payload(document)
            if ticket.signal.cancelled:
                return None
            self._set_phase(request_id, RequestPhase.SYNCED)

            request = build_completion_request(
                request_id=request_id,
                document=document,
                context=editor_context,
                trigger_source=context.trigger_source,
                sync_payload=payload,
                settings=self.settings,
                diff_history=self._history.get(uri),
                stored_control_token=self._control_token,
                time_since_request_start_ms=(self._clock.now() - ticket.start_time) * 1000,
                rng=self._rng,
            )

            started = self._clock.now()
            stream_settings = self.settings.stream
            try:
                decoded = await with_retry(
                    lambda: self._stream(request, ticket),
                    retries=stream_settings.max_retries,
                    delay_ms=stream_settings.retry_delay_ms,
                    clock=self._clock,
                    description=f"Stream {request_id}",
                    log=self._logger,
                )
            except Exception as e:
                self._stats.failed_requests += 1
                self._set_phase(request_id, RequestPhase.FAILED)
                self._logger.warning(f"No suggestion for {request_id}: {e}")
                return None

            self._stats.generations += 1
            self._stats.total_generation_ms += (self._clock.now() - started) * 1000

            if ticket.signal.cancelled:
                self._set_phase(request_id, RequestPhase.CANCELLED)
                return None
            if decoded.model_info is not None:
                self._update_capabilities(decoded.model_info)

            self._set_phase(request_id, RequestPhase.VALIDATING)
            return self._resolve(context, request_id, decoded, self._is_current(uri, request_id))
        finally:
            self._active.pop(request_id, None)
            self._superseded.discard(request_id)
            self._admission.remove_request(request_id)
            if self._current.get(uri) == request_id:
                del self._current[uri]

    async def _stream(self, request: CompletionRequest, ticket: AdmissionTicket) -> DecodedStream:
        await self._backend.stream_start(
            request,
            StreamOptions(
                request_id=ticket.request_id, start_time=ticket.start_time, signal=ticket.signal
            ),
        )
        self._set_phase(ticket.request_id, RequestPhase.STREAMING)

        stream_settings = self.settings.stream
        decoder = StreamDecoder()
        poller = StreamPoller(
            self._backend,
            ticket.request_id,
            ticket.signal,
            self._clock,
            poll_interval_ms=stream_settings.poll_interval_ms,
            timeout_ms=stream_settings.stream_timeout_ms,
            logger=self._logger,
        )
        async for chunk in poller.chunks():
            decoder.feed(chunk)
        return decoder.finish()

    def _resolve(
        self,
        context: SuggestionContext,
        request_id: str,
        decoded: DecodedStream,
        is_current: bool,
    ) -> Optional[Suggestion]:
        document = context.document
        target = decoded.cursor_prediction
        if target is not None and not self._prediction_allowed(target, context.position):
            target = None

        if not decoded.edits:
            if target is None or not is_current:
                return None
            return self._deliver_jump_hint(context, request_id, target)

        primary, rest = decoded.edits[0], decoded.edits[1:]
        validation = self._heuristics.is_valid_cpp_case(
            document,
            primary.range.start_line_number,
            primary.range.end_line_number_inclusive,
            primary.text,
        )
        if not validation.valid:
            self._stats.invalid_suggestions += 1
            self._logger.debug(f"Suggestion {request_id} rejected: {validation.reason.value}")
            if target is None or not is_current:
                return None
            return self._deliver_jump_hint(context, request_id, target)

        suggestion = self._build_suggestion(document, context.position, request_id, primary)
        suggestion.cursor_prediction_target = target

        if not is_current:
            self._cache.add(suggestion, document.uri, document.version)
            self._stats.superseded_requests += 1
            self._set_phase(request_id, RequestPhase.CACHED)
            return None

        if rest:
            self._arena.put_followups(
                FollowupSession(
                    request_id=request_id,
                    uri=document.uri,
                    document_version_at_cache=document.version,
                    queue=deque(rest),
                )
            )
            suggestion.next_action_id = self._arena.register_next_action(NextEdit(request_id))
        elif target is not None:
            suggestion.next_action_id = self._arena.register_next_action(
                FusedCursorPrediction(request_id=request_id, target=target)
            )

        if primary.binding_id:
            self._arena.bind(primary.binding_id, request_id, document.uri)
        return self._deliver(suggestion)

    def _serve_followup(self, context: SuggestionContext) -> Optional[Suggestion]:
        document = context.document
        item = self._arena.next_followup(document.uri, document.version)
        if item is None:
            return None

        request_id, edit = item
        validation = self._heuristics.is_valid_cpp_case(
            document, edit.range.start_line_number, edit.range.end_line_number_inclusive, edit.text
        )
        if not validation.valid:
            self._stats.invalid_suggestions += 1
            self._logger.debug(f"Follow-up of {request_id} rejected: {validation.reason.value}")
            return None

        suggestion = self._build_suggestion(document, context.position, request_id, edit)
        if self._arena.has_followups(request_id):
            suggestion.next_action_id = self._arena.register_next_action(NextEdit(request_id))
        if edit.binding_id:
            self._arena.bind(edit.binding_id, request_id, document.uri)
        self._logger.debug(f"Serving follow-up edit of {request_id}")
        return self._deliver(suggestion)

    def _build_suggestion(
        self, document: TextDocument, cursor: Position, request_id: str, edit: Edit
    ) -> Suggestion:
        is_inline_edit = not _renders_as_ghost_text(document, cursor, edit)
        return Suggestion(
            text=edit.text,
            range=document.to_range(edit.range),
            request_id=request_id,
            uri=document.uri,
            document_version=document.version,
            binding_id=edit.binding_id,
            display_hint=DisplayHint.INLINE_EDIT if is_inline_edit else DisplayHint.GHOST_TEXT,
            is_inline_edit=is_inline_edit,
            line_range=edit.range,
        )

    def _deliver_jump_hint(
        self, context: SuggestionContext, request_id: str, target: CursorPredictionTarget
    ) -> Suggestion:
        document = context.document
        suggestion = Suggestion(
            text="",
            range=Range(start=context.position, end=context.position),
            request_id=request_id,
            uri=document.uri,
            document_version=document.version,
            display_hint=DisplayHint.JUMP,
            cursor_prediction_target=target,
        )
        suggestion.next_action_id = self._arena.register_next_action(
            FusedCursorPrediction(request_id=request_id, target=target)
        )
        return self._deliver(suggestion)

    def _deliver(self, suggestion: Suggestion) -> Suggestion:
        self._arena.remember_suggestion(suggestion)
        self._stats.suggestions_returned += 1
        self._set_phase(suggestion.request_id, RequestPhase.RESOLVED)
        return suggestion

    # ------------------------------------------------------------------
    # Editor events
    # ------------------------------------------------------------------

    def handle_shown(self, uri: str, request_id: str) -> None:
        self._stats.suggestions_shown += 1

    def handle_accept(
        self,
        uri: str,
        request_id: Optional[str] = None,
        binding_id: Optional[str] = None,
        next_action_id: Optional[str] = None,
    ) -> None:
        """Handle acceptance of a suggestion.

        Runs the suggestion's next action: a fused cursor prediction moves
        the cursor, a queued follow-up edit re-triggers a request that the
        follow-up queue will answer.

        Args:
            uri: Document uri
            request_id: Request that produced the suggestion
            binding_id: Server-side binding id of the accepted edit
            next_action_id: Overrides the suggestion's next action id
        """
        resolved = self._arena.resolve_request(uri, binding_id=binding_id, request_id=request_id)
        if resolved is None:
            self._logger.debug(f"Accept for unknown suggestion in {uri}")
            return

        self._stats.accepts += 1
        suggestion = self._arena.get_suggestion(resolved)
        if suggestion is not None:
            self._stats.accepted_characters += len(suggestion.text)
            self._suppressor.record_accepted(suggestion.uri, suggestion.range.start.line)
            if next_action_id is None:
                next_action_id = suggestion.next_action_id

        action = self._arena.pop_next_action(next_action_id)
        if isinstance(action, FusedCursorPrediction):
            self._stats.prediction_jumps += 1
            self._suppressor.mark_cursor_move_as_prediction()
            self._editor.navigate_to(action.target)
            if action.target.should_retrigger:
                self._editor.retrigger(uri)
        elif isinstance(action, NextEdit):
            self._editor.retrigger(uri)

        if not self._arena.has_followups(resolved):
            self._arena.teardown(resolved)

    def handle_partial_accept(
        self, uri: str, request_id: Optional[str], accepted_length: int, binding_id: Optional[str] = None
    ) -> None:
        resolved = self._arena.resolve_request(uri, binding_id=binding_id, request_id=request_id)
        if resolved is None:
            return
        self._stats.partial_accepts += 1
        self._stats.accepted_characters += accepted_length

    def handle_reject(
        self, uri: str, request_id: Optional[str] = None, binding_id: Optional[str] = None
    ) -> None:
        """Handle an explicit rejection: cooldown and teardown."""
        self._stats.rejects += 1
        self._dismiss(uri, request_id, binding_id, "rejected")

    def handle_end_of_life(
        self, uri: str, request_id: Optional[str] = None, binding_id: Optional[str] = None
    ) -> None:
        """Handle a suggestion that was ignored or replaced without acceptance."""
        self._dismiss(uri, request_id, binding_id, "ended")

    def _dismiss(
        self, uri: str, request_id: Optional[str], binding_id: Optional[str], reason: str
    ) -> None:
        self._triggers.record_rejection()
        resolved = self._arena.resolve_request(uri, binding_id=binding_id, request_id=request_id)
        if resolved is None:
            return
        self._arena.teardown(resolved)
        self._cache.remove_request(resolved)
        self._logger.debug(f"Suggestion {resolved} {reason}")

    def notify_cursor_moved(
        self, uri: str, position: Position, caused_by_prediction: bool = False
    ) -> None:
        if not caused_by_prediction:
            self._suppressor.clear_prediction_move()

    def notify_document_changed(self, uri: str) -> None:
        self._triggers.record_edit(uri)

    # ------------------------------------------------------------------
    # Cancellation and teardown
    # ------------------------------------------------------------------

    def cancel_request(self, request_id: str) -> bool:
        """Abort a request on explicit user action.

        Returns:
            True if the request was in flight
        """
        tracked = self._admission.cancel_request(request_id, reason="user cancelled")
        active = self._active.get(request_id)
        if active is not None:
            active.ticket.signal.cancel("user cancelled")
            tracked = True
        if not tracked:
            return False

        self._backend.cancel(request_id)
        self._arena.teardown(request_id)
        self._cache.remove_request(request_id)
        self._stats.cancelled_requests += 1
        self._set_phase(request_id, RequestPhase.CANCELLED)
        return True

    def cancel_document(self, uri: str) -> None:
        """Abort every in-flight request for a document."""
        for request_id in [s.request_id for s in self._active.values() if s.uri == uri]:
            self.cancel_request(request_id)

    def clear_document(self, uri: str) -> None:
        self.cancel_document(uri)
        self._current.pop(uri, None)
        self._cache.clear_document(uri)
        self._arena.clear_document(uri)
        self._history.clear(uri)
        self._triggers.forget_document(uri)

    def dispose(self) -> None:
        for request_id in list(self._active):
            self.cancel_request(request_id)
        self._admission.cancel_all()
        self._cache.clear()
        self._arena.clear()
        self._current.clear()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_eligible(self, context: SuggestionContext, editor_context: EditorContext) -> bool:
        document = context.document
        flags = self.settings.flags
        if not flags.enable_inline_suggestions:
            return False
        if document.language_id and document.language_id in flags.excluded_languages:
            return False
        if len(document.text) > flags.max_document_size:
            self._logger.debug(f"Skipping {document.path}: too large")
            return False
        if editor_context.has_selection:
            return False
        if context.trigger_source != TriggerSource.MANUAL and not flags.trigger_in_comments:
            line = document.line_at(context.position.line).lstrip()
            if line.startswith(_COMMENT_PREFIXES):
                return False
        return self._triggers.allows(context.trigger_source, document.uri, context.position.line)

    def _prediction_allowed(self, target: CursorPredictionTarget, cursor: Position) -> bool:
        if not self.settings.flags.enable_cursor_prediction:
            return False
        result = self._suppressor.should_suppress(
            target.relative_path, target.line_number_one_indexed, cursor.line
        )
        if result.suppress:
            self._logger.debug(f"Cursor prediction suppressed: {result.reason}")
            return False
        return True

    def _is_current(self, uri: str, request_id: str) -> bool:
        return self._current.get(uri) == request_id and request_id not in self._superseded

    def _supersede(self, uri: str, request_ids: list[str]) -> None:
        for request_id in request_ids:
            active = self._active.get(request_id)
            if active is not None and active.uri == uri:
                self._superseded.add(request_id)

    def _register_stream(self, stream: _ActiveStream) -> None:
        # Superseded streams stay tracked so cancel_document still reaches them
        running = self.active_request_ids
        excess = len(running) - self.settings.debounce.max_concurrent_streams + 1
        for oldest_id in running[: max(excess, 0)]:
            self._superseded.add(oldest_id)
            self._logger.info(f"Stream limit reached, superseding {oldest_id}")
        self._active[stream.request_id] = stream

    def _set_phase(self, request_id: str, phase: RequestPhase) -> None:
        stream = self._active.get(request_id)
        if stream is not None:
            stream.phase = phase
        self._logger.debug(f"Request {request_id}: {phase.value}")

    def _update_capabilities(self, info: ModelInfo) -> None:
        self._capabilities = ModelCapabilities(
            is_fused_cursor_prediction_model=info.is_fused_cursor_prediction_model,
            is_multidiff_model=info.is_multidiff_model,
            model_name=info.model_name or self._capabilities.model_name,
        )

    def _on_settings_changed(self, settings: TabSettings) -> None:
        self._admission.configure(
            client_debounce_ms=settings.debounce.client_debounce_ms,
            total_debounce_ms=settings.debounce.total_debounce_ms,
            max_request_age_ms=settings.debounce.max_request_age_ms,
        )
        self._heuristics.update_settings(settings.heuristics)
        self._suppressor.update_settings(settings.heuristics)
        self._triggers.update_settings(settings.triggers)
        self._cache.configure(
            capacity=settings.stream.cache_capacity,
            max_version_lag=settings.stream.cache_max_version_lag,
        )
        self._arena.configure(followup_max_version_lag=settings.stream.followup_max_version_lag)


def _renders_as_ghost_text(document: TextDocument, cursor: Position, edit: Edit) -> bool:
    """Whether an edit only appends to the cursor line at the cursor."""
    if edit.range.line_count != 1 or edit.range.start_line_number - 1 != cursor.line:
        return False
    prefix = document.line_at(cursor.line)[: cursor.character]
    return edit.text.startswith(prefix)
