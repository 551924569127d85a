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

"""Keeps the service's copy of each open document consistent.

A document is first uploaded in full. Later edits are queued in the
UpdateQueue and flushed as incremental delta batches. Completion
requests only rely on the service's copy after a streak of successful
syncs and while the local version is close to the synced one;
otherwise they carry the content themselves.

Sync failures never propagate: they reset the streak, which forces a
full upload next time and makes requests fall back to inline content.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from tabflow.completion.content import calculate_sha256
from tabflow.completion.protocol import ContentChange, SyncRecord, TextDocument
from tabflow.config.settings import SyncSettings
from tabflow.sync.updates import UpdateQueue
from tabflow.timing import Clock, get_default_clock

if TYPE_CHECKING:
    from tabflow.completion.backend import CompletionBackend

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    UNSYNCED = "unsynced"
    UPLOADING = "uploading"
    SYNCED = "synced"


@dataclass
class SyncState:
    """Sync bookkeeping for one document."""

    synced_version: Optional[int] = None
    consecutive_success_count: int = 0
    in_flight: bool = False
    last_error: Optional[str] = None

    @property
    def phase(self) -> SyncPhase:
        if self.in_flight:
            return SyncPhase.UPLOADING
        if self.synced_version is None:
            return SyncPhase.UNSYNCED
        return SyncPhase.SYNCED


@dataclass
class SyncPayload:
    """Sync-related part of a completion request."""

    rely_on_file_sync: bool = False
    updates: list[SyncRecord] = field(default_factory=list)


class SyncCoordinator:
    """Full and incremental document sync with hysteresis."""

    def __init__(
        self,
        backend: "CompletionBackend",
        updates: Optional[UpdateQueue] = None,
        settings: Optional[SyncSettings] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._backend = backend
        self._settings = settings or SyncSettings()
        self._updates = updates or UpdateQueue(max_length=self._settings.max_queue_length)
        self._clock = clock or get_default_clock()
        self._logger = logger or logging.getLogger(__name__)
        self._states: dict[str, SyncState] = {}
        self._latest: dict[str, TextDocument] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    @property
    def updates(self) -> UpdateQueue:
        return self._updates

    def update_settings(self, settings: SyncSettings) -> None:
        self._settings = settings
        self._updates.resize(settings.max_queue_length)

    def get_state(self, uri: str) -> Optional[SyncState]:
        return self._states.get(uri)

    # ------------------------------------------------------------------
    # Sync operations
    # ------------------------------------------------------------------

    async def prepare_document(self, document: TextDocument) -> bool:
        """Bring the service's copy up to date.

        Full upload if the document was never synced or the last attempt
        failed, incremental flush otherwise.

        Returns:
            True if the service holds the document at its latest queued version
        """
        state = self._states.get(document.uri)
        if state is not None and state.in_flight:
            self._logger.debug(f"Sync already in flight for {document.uri}")
            return False
        if state is None or state.synced_version is None or state.consecutive_success_count == 0:
            return await self.upload_full(document)
        return await self.flush_incremental(document)

    async def upload_full(self, document: TextDocument) -> bool:
        """Upload the whole document."""
        state = self._states.setdefault(document.uri, SyncState())
        state.in_flight = True
        try:
            await self._backend.upload_full_file(
                document.path, document.text, document.version, calculate_sha256(document.text)
            )
        except Exception as e:
            self._logger.error(f"Full upload of {document.path} v{document.version} failed: {e}")
            state.consecutive_success_count = 0
            state.last_error = str(e)
            return False
        finally:
            state.in_flight = False

        if self._states.get(document.uri) is not state:
            return False
        state.synced_version = document.version
        state.consecutive_success_count = 1
        state.last_error = None
        self._updates.drop_through(document.uri, document.version)
        self._logger.info(f"Uploaded {document.path} v{document.version}")
        return True

    async def flush_incremental(self, document: TextDocument) -> bool:
        """Send queued deltas, falling back to a full upload when unsafe."""
        state = self._states.get(document.uri)
        synced = state.synced_version if state is not None else None
        pending = self._updates.get_updates(document.uri, synced)
        if not pending:
            return True

        highest = pending[-1].model_version
        if highest <= 1 or synced is None:
            return await self.upload_full(document)
        if synced < highest - self._settings.drift_threshold:
            self._logger.info(
                f"Sync drift for {document.path} (synced v{synced}, pending v{highest}), "
                f"uploading full file"
            )
            return await self.upload_full(document)
        if synced > highest:
            return await self.upload_full(document)

        state.in_flight = True
        try:
            await self._backend.sync_incremental(
                document.path, highest, pending, calculate_sha256(document.text)
            )
        except Exception as e:
            self._logger.error(f"Incremental sync of {document.path} v{highest} failed: {e}")
            state.consecutive_success_count = 0
            state.last_error = str(e)
            return False
        finally:
            state.in_flight = False

        if self._states.get(document.uri) is not state:
            return False
        state.synced_version = highest
        state.consecutive_success_count += 1
        state.last_error = None
        self._updates.drop_through(document.uri, highest)
        self._logger.debug(
            f"Synced {len(pending)} updates for {document.path} up to v{highest} "
            f"(streak {state.consecutive_success_count})"
        )
        return True

    def should_rely_on_file_sync(self, document: TextDocument) -> bool:
        """Whether a request may omit content and rely on the service's copy."""
        state = self._states.get(document.uri)
        if state is None or state.synced_version is None:
            return False
        if document.version - state.synced_version > self._settings.max_version_lag:
            return False
        return state.consecutive_success_count >= self._settings.min_success_streak

    async def get_sync_payload(self, document: TextDocument) -> SyncPayload:
        """Decide between content-based and delta-based requests.

        When relying on sync, gathers the deltas covering synced+1 through
        the document's version, retrying briefly while they are being
        recorded. Gives up on relying for this request if they never
        become available.
        """
        if not self.should_rely_on_file_sync(document):
            return SyncPayload(rely_on_file_sync=False)

        delay = self._settings.payload_retry_delay_ms / 1000
        for attempt in range(self._settings.payload_max_retries + 1):
            state = self._states.get(document.uri)
            if state is None or state.synced_version is None:
                break
            synced = state.synced_version
            if synced >= document.version:
                return SyncPayload(rely_on_file_sync=True)

            covering = [
                record
                for record in self._updates.get_updates(document.uri, synced)
                if record.model_version <= document.version
            ]
            if (
                covering
                and covering[0].model_version == synced + 1
                and covering[-1].model_version == document.version
            ):
                return SyncPayload(rely_on_file_sync=True, updates=covering)

            if attempt < self._settings.payload_max_retries:
                await self._clock.sleep(delay)

        self._logger.warning(
            f"Could not gather updates for {document.path} v{document.version}, "
            f"sending content instead"
        )
        return SyncPayload(rely_on_file_sync=False)

    # ------------------------------------------------------------------
    # Edit tracking and scheduling
    # ------------------------------------------------------------------

    def record_edit(self, document: TextDocument, changes: list[ContentChange]) -> SyncRecord:
        """Queue an edit event and schedule a debounced sync.

        Args:
            document: Document after the edit
            changes: Content changes of the edit event
        """
        record = self._updates.record_change(document, changes)
        self._latest[document.uri] = document
        if self._settings.schedule_on_edit:
            self.schedule_sync(document.uri)
        return record

    def on_visibility_changed(self, document: TextDocument) -> None:
        """Sync immediately when a document becomes visible."""
        self._latest[document.uri] = document
        self.schedule_sync(document.uri, delay_ms=0)

    def schedule_sync(self, uri: str, delay_ms: Optional[float] = None) -> None:
        """Schedule prepare_document() for the latest snapshot, replacing a pending one."""
        if uri not in self._latest:
            return
        self._cancel_timer(uri)
        if delay_ms is None:
            delay_ms = self._settings.sync_debounce_ms
        self._timers[uri] = asyncio.ensure_future(self._delayed_sync(uri, delay_ms / 1000))

    async def wait_idle(self) -> None:
        """Wait for scheduled syncs to finish."""
        while self._timers or self._running:
            pending = list(self._timers.values()) + list(self._running)
            await asyncio.gather(*pending, return_exceptions=True)

    def close_document(self, uri: str) -> None:
        """Forget everything about a closed document."""
        self._cancel_timer(uri)
        self._states.pop(uri, None)
        self._latest.pop(uri, None)
        self._updates.clear(uri)

    def dispose(self) -> None:
        for uri in list(self._timers):
            self._cancel_timer(uri)
        for task in list(self._running):
            task.cancel()
        self._states.clear()
        self._latest.clear()

    async def _delayed_sync(self, uri: str, delay: float) -> None:
        if delay > 0:
            await self._clock.sleep(delay)

        # Past this point a newer schedule_sync() must not cancel the sync
        task = asyncio.current_task()
        if self._timers.get(uri) is task:
            del self._timers[uri]
        self._running.add(task)
        try:
            document = self._latest.get(uri)
            if document is not None:
                await self.prepare_document(document)
        finally:
            self._running.discard(task)

    def _cancel_timer(self, uri: str) -> None:
        task = self._timers.pop(uri, None)
        if task is not None and not task.done():
            task.cancel()
