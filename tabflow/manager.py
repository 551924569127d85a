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

"""Tab completion manager.

Provides a high-level API for editor integration following the
Facade pattern: one object receives editor events and answers
suggestion requests.
"""

import logging
from typing import Optional

from rich.console import Console

from tabflow.completion.backend import CompletionBackend
from tabflow.completion.content import generate_workspace_id
from tabflow.completion.orchestrator import (
    CompletionOrchestrator,
    EditorSession,
    SuggestionContext,
)
from tabflow.completion.protocol import (
    ContentChange,
    Diagnostic,
    Position,
    SessionStatistics,
    Suggestion,
    TextDocument,
    TriggerSource,
)
from tabflow.completion.request_builder import ControlToken
from tabflow.completion.triggers import DiagnosticsTracker
from tabflow.config.settings import ConfigProvider, ServerConfig, TabSettings
from tabflow.status import render_status
from tabflow.sync.coordinator import SyncCoordinator
from tabflow.sync.updates import UpdateQueue
from tabflow.timing import Clock, get_default_clock

logger = logging.getLogger(__name__)


class TabCompletionManager:
    """High-level manager for tab completion.

    Wires the orchestrator, document sync and configuration together.
    Handles:
    - Suggestion requests and their outcome events
    - Document edits, visibility and close events
    - Diagnostics-driven triggers
    - Snoozing and server tuning
    """

    def __init__(
        self,
        backend: CompletionBackend,
        editor: EditorSession,
        config: Optional[ConfigProvider] = None,
        clock: Optional[Clock] = None,
        control_token: Optional[ControlToken] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the manager.

        Args:
            backend: Completion service client
            editor: Host editor session
            config: Settings provider (defaults are used if not provided)
            clock: Time source (system clock if not provided)
            control_token: Control token persisted for the session
            logger: Logger override for all components
        """
        self._config = config or ConfigProvider()
        if self._config.settings.workspace_id is None:
            self._config.replace(
                self._config.settings.model_copy(update={"workspace_id": generate_workspace_id()})
            )
        self._clock = clock or get_default_clock()
        self._logger = logger or logging.getLogger(__name__)

        settings = self._config.settings
        self._updates = UpdateQueue(max_length=settings.sync.max_queue_length, logger=self._logger)
        self._sync = SyncCoordinator(
            backend, self._updates, settings.sync, clock=self._clock, logger=self._logger
        )
        self._orchestrator = CompletionOrchestrator(
            backend,
            self._sync,
            editor,
            config=self._config,
            clock=self._clock,
            control_token=control_token,
            logger=self._logger,
        )
        self._diagnostics = DiagnosticsTracker()
        self._unsubscribe = self._config.on_change(self._on_settings_changed)

    @property
    def settings(self) -> TabSettings:
        return self._config.settings

    @property
    def config(self) -> ConfigProvider:
        return self._config

    @property
    def orchestrator(self) -> CompletionOrchestrator:
        return self._orchestrator

    @property
    def sync(self) -> SyncCoordinator:
        return self._sync

    @property
    def statistics(self) -> SessionStatistics:
        return self._orchestrator.statistics

    async def provide_suggestion(
        self,
        document: TextDocument,
        position: Position,
        trigger_source: TriggerSource = TriggerSource.TYPING,
    ) -> Optional[Suggestion]:
        """Get a suggestion at a position.

        Args:
            document: Document snapshot
            position: Cursor position (0-indexed)
            trigger_source: Why the request started

        Returns:
            Suggestion to show, or None
        """
        try:
            return await self._orchestrator.request_suggestion(
                SuggestionContext(document=document, position=position, trigger_source=trigger_source)
            )
        except Exception as e:
            self._logger.error(f"Suggestion request failed: {e}")
            self._orchestrator.statistics.failed_requests += 1
            return None

    # Document events

    def on_document_changed(self, document: TextDocument, changes: list[ContentChange]) -> None:
        """Record an edit. Needs a running event loop for sync scheduling."""
        self._sync.record_edit(document, changes)
        self._orchestrator.history.record(document.uri, changes)
        self._orchestrator.notify_document_changed(document.uri)

    def on_visibility_changed(self, document: TextDocument) -> None:
        self._sync.on_visibility_changed(document)

    def on_document_closed(self, uri: str) -> None:
        self._sync.close_document(uri)
        self._orchestrator.clear_document(uri)
        self._diagnostics.forget(uri)

    def on_cursor_moved(self, uri: str, position: Position, caused_by_prediction: bool = False) -> None:
        self._orchestrator.notify_cursor_moved(uri, position, caused_by_prediction)

    async def on_diagnostics_changed(
        self, document: TextDocument, diagnostics: list[Diagnostic], position: Position
    ) -> Optional[Suggestion]:
        """Request a suggestion when new errors appear in a document."""
        if not self._diagnostics.update(document.uri, diagnostics):
            return None
        return await self.provide_suggestion(document, position, TriggerSource.LINTER_ERRORS)

    # Suggestion outcome events

    def accept(
        self, uri: str, request_id: Optional[str] = None, binding_id: Optional[str] = None
    ) -> None:
        self._orchestrator.handle_accept(uri, request_id=request_id, binding_id=binding_id)

    def partial_accept(
        self,
        uri: str,
        request_id: Optional[str],
        accepted_length: int,
        binding_id: Optional[str] = None,
    ) -> None:
        self._orchestrator.handle_partial_accept(
            uri, request_id, accepted_length, binding_id=binding_id
        )

    def reject(
        self, uri: str, request_id: Optional[str] = None, binding_id: Optional[str] = None
    ) -> None:
        self._orchestrator.handle_reject(uri, request_id=request_id, binding_id=binding_id)

    def end_of_life(
        self, uri: str, request_id: Optional[str] = None, binding_id: Optional[str] = None
    ) -> None:
        self._orchestrator.handle_end_of_life(uri, request_id=request_id, binding_id=binding_id)

    def shown(self, uri: str, request_id: str) -> None:
        self._orchestrator.handle_shown(uri, request_id)

    def cancel(self, uri: str) -> None:
        """Cancel in-flight requests for a document on user request."""
        self._orchestrator.cancel_document(uri)

    # Snooze and tuning

    def snooze(self, minutes: float) -> None:
        self._orchestrator.triggers.snooze(minutes)

    def cancel_snooze(self) -> None:
        self._orchestrator.triggers.cancel_snooze()

    @property
    def is_snoozing(self) -> bool:
        return self._orchestrator.triggers.is_snoozing

    def apply_server_config(self, config: ServerConfig) -> TabSettings:
        return self._config.apply_server_config(config)

    def render_status(self, console: Optional[Console] = None) -> Console:
        return render_status(
            self.statistics, self.settings, self._config.server_config, console=console
        )

    def dispose(self) -> None:
        self._unsubscribe()
        self._orchestrator.dispose()
        self._sync.dispose()

    def _on_settings_changed(self, settings: TabSettings) -> None:
        self._sync.update_settings(settings.sync)
