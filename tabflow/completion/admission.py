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

"""Request admission and debounce control.

Every trigger is admitted immediately and receives an id. Whether it is
actually sent is decided later by should_debounce(), which waits out
the client debounce window once and then checks whether a newer request
arrived within that window.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from tabflow.config.settings import DebounceSettings
from tabflow.timing import Clock, get_default_clock

logger = logging.getLogger(__name__)


class CancellationSignal:
    """Cooperative cancellation flag shared with a request's stream."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason


@dataclass
class RequestEntry:
    """A tracked in-flight request."""

    request_id: str
    start_time: float
    signal: CancellationSignal = field(default_factory=CancellationSignal)


@dataclass
class AdmissionTicket:
    """Result of admitting a request."""

    request_id: str
    start_time: float
    signal: CancellationSignal
    ids_to_cancel: list[str] = field(default_factory=list)


class AdmissionController:
    """Tracks in-flight requests and decides which ones are worth sending."""

    def __init__(
        self,
        settings: Optional[DebounceSettings] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        settings = settings or DebounceSettings()
        self._clock = clock or get_default_clock()
        self._logger = logger or logging.getLogger(__name__)
        self._client_debounce = settings.client_debounce_ms / 1000
        self._total_debounce = settings.total_debounce_ms / 1000
        self._max_request_age = settings.max_request_age_ms / 1000
        self._entries: list[RequestEntry] = []

    @property
    def request_count(self) -> int:
        return len(self._entries)

    @property
    def request_ids(self) -> list[str]:
        return [entry.request_id for entry in self._entries]

    def configure(
        self,
        client_debounce_ms: Optional[float] = None,
        total_debounce_ms: Optional[float] = None,
        max_request_age_ms: Optional[float] = None,
    ) -> None:
        """Adjust debounce durations at runtime."""
        if client_debounce_ms is not None:
            self._client_debounce = client_debounce_ms / 1000
        if total_debounce_ms is not None:
            self._total_debounce = total_debounce_ms / 1000
        if max_request_age_ms is not None:
            self._max_request_age = max_request_age_ms / 1000
        self._logger.debug(
            f"Debounce durations: client={self._client_debounce * 1000:.0f}ms "
            f"total={self._total_debounce * 1000:.0f}ms"
        )

    def run_request(self) -> AdmissionTicket:
        """Admit a new request.

        Returns:
            Ticket with the new id, its cancellation signal, and the ids of
            earlier requests started within the total debounce window
        """
        now = self._clock.now()
        self._prune(now)

        ids_to_cancel = [
            entry.request_id
            for entry in self._entries
            if entry.start_time + self._total_debounce > now
        ]

        entry = RequestEntry(request_id=uuid.uuid4().hex, start_time=now)
        self._entries.append(entry)
        self._logger.debug(
            f"Admitted request {entry.request_id} ({len(ids_to_cancel)} stale, "
            f"{len(self._entries)} tracked)"
        )
        return AdmissionTicket(
            request_id=entry.request_id,
            start_time=entry.start_time,
            signal=entry.signal,
            ids_to_cancel=ids_to_cancel,
        )

    async def should_debounce(self, request_id: str) -> bool:
        """Decide whether a request should be suppressed.

        Waits out the remainder of the client debounce window once, then
        reports True if a newer request started within that window after
        this one.

        Args:
            request_id: Id returned by run_request()

        Returns:
            True if the request should not be sent
        """
        try:
            entry = self._find(request_id)
            if entry is None:
                return False

            elapsed = self._clock.now() - entry.start_time
            if elapsed < self._client_debounce:
                await self._clock.sleep(self._client_debounce - elapsed)

            index = self._index_of(request_id)
            if index is None or index == len(self._entries) - 1:
                return False

            newer = self._entries[index + 1]
            return newer.start_time - entry.start_time < self._client_debounce
        except Exception as e:
            self._logger.warning(f"Debounce check failed for {request_id}: {e}")
            return False

    def get_request(self, request_id: str) -> Optional[RequestEntry]:
        return self._find(request_id)

    def remove_request(self, request_id: str) -> None:
        """Stop tracking a finished request."""
        index = self._index_of(request_id)
        if index is not None:
            del self._entries[index]

    def cancel_request(self, request_id: str, reason: str = "cancelled") -> bool:
        """Hard-cancel a request and stop tracking it.

        Returns:
            True if the request was tracked
        """
        index = self._index_of(request_id)
        if index is None:
            return False
        entry = self._entries.pop(index)
        entry.signal.cancel(reason)
        self._logger.info(f"Cancelled request {request_id}: {reason}")
        return True

    def cancel_all(self, reason: str = "disposed") -> None:
        for entry in self._entries:
            entry.signal.cancel(reason)
        self._entries.clear()

    def _prune(self, now: float) -> None:
        self._entries = [
            entry for entry in self._entries if now - entry.start_time <= self._max_request_age
        ]

    def _find(self, request_id: str) -> Optional[RequestEntry]:
        index = self._index_of(request_id)
        return self._entries[index] if index is not None else None

    def _index_of(self, request_id: str) -> Optional[int]:
        for i, entry in enumerate(self._entries):
            if entry.request_id == request_id:
                return i
        return None
