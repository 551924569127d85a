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

"""Caches for completion results.

SuggestionCache keeps the results of superseded requests so a later
trigger on a nearby document version can be served without a round
trip. RequestArena holds everything else keyed by request id (follow-up
edit queues, binding ids, next actions) and tears it down per request.
"""

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Union

from tabflow.completion.protocol import CursorPredictionTarget, Edit, Suggestion
from tabflow.timing import Clock, get_default_clock

logger = logging.getLogger(__name__)


@dataclass
class CachedSuggestion:
    """A suggestion kept for reuse."""

    suggestion: Suggestion
    uri: str
    document_version: int
    timestamp: float


class SuggestionCache:
    """Bounded ring buffer of suggestions from superseded requests.

    An entry is servable while 0 <= current_version - cached_version <= max_version_lag.
    Once capacity is exceeded the oldest entry is evicted.
    """

    def __init__(
        self,
        capacity: int = 5,
        max_version_lag: int = 3,
        clock: Optional[Clock] = None,
    ):
        self._entries: deque[CachedSuggestion] = deque(maxlen=capacity)
        self._max_version_lag = max_version_lag
        self._clock = clock or get_default_clock()

    def __len__(self) -> int:
        return len(self._entries)

    def configure(
        self, capacity: Optional[int] = None, max_version_lag: Optional[int] = None
    ) -> None:
        """Apply new limits, keeping the newest entries that still fit."""
        if capacity is not None and capacity != self._entries.maxlen:
            self._entries = deque(self._entries, maxlen=capacity)
        if max_version_lag is not None:
            self._max_version_lag = max_version_lag

    def add(self, suggestion: Suggestion, uri: str, document_version: int) -> None:
        self._entries.append(
            CachedSuggestion(
                suggestion=suggestion,
                uri=uri,
                document_version=document_version,
                timestamp=self._clock.now(),
            )
        )
        logger.debug(f"Cached suggestion from {suggestion.request_id} at v{document_version}")

    def find(self, uri: str, current_version: int) -> Optional[CachedSuggestion]:
        """Get the newest servable entry without consuming it."""
        for entry in reversed(self._entries):
            if entry.uri == uri and self._is_servable(entry, current_version):
                return entry
        return None

    def take(self, uri: str, current_version: int) -> Optional[Suggestion]:
        """Consume the newest servable entry for a document."""
        entry = self.find(uri, current_version)
        if entry is None:
            return None
        self._entries.remove(entry)
        return entry.suggestion

    def remove_request(self, request_id: str) -> None:
        self._entries = deque(
            (e for e in self._entries if e.suggestion.request_id != request_id),
            maxlen=self._entries.maxlen,
        )

    def clear_document(self, uri: str) -> None:
        self._entries = deque(
            (e for e in self._entries if e.uri != uri), maxlen=self._entries.maxlen
        )

    def clear(self) -> None:
        self._entries.clear()

    def _is_servable(self, entry: CachedSuggestion, current_version: int) -> bool:
        lag = current_version - entry.document_version
        return 0 <= lag <= self._max_version_lag


@dataclass
class FollowupSession:
    """Remaining edits from a multi-edit response."""

    request_id: str
    uri: str
    document_version_at_cache: int
    queue: deque[Edit] = field(default_factory=deque)

    def __len__(self) -> int:
        return len(self.queue)


@dataclass
class NextEdit:
    """Accepting the suggestion should re-request and serve the next queued edit."""

    request_id: str


@dataclass
class FusedCursorPrediction:
    """Accepting the suggestion should move the cursor to a predicted location."""

    request_id: str
    target: CursorPredictionTarget


NextAction = Union[NextEdit, FusedCursorPrediction]


@dataclass
class BindingEntry:
    request_id: str
    uri: str


class RequestArena:
    """Per-request state keyed by opaque ids.

    Holds follow-up sessions (by request id), binding ids (server-side
    edit handles mapped to their request and document), next actions
    (by next-action id) and the last suggestion shown per request.
    teardown() removes all of it for one request.
    """

    def __init__(self, followup_max_version_lag: int = 1):
        self._followup_max_version_lag = followup_max_version_lag
        self._followups: dict[str, FollowupSession] = {}
        self._bindings: dict[str, BindingEntry] = {}
        self._request_bindings: dict[str, set[str]] = {}
        self._next_actions: dict[str, NextAction] = {}
        self._request_actions: dict[str, set[str]] = {}
        self._suggestions: dict[str, Suggestion] = {}

    def configure(self, followup_max_version_lag: Optional[int] = None) -> None:
        if followup_max_version_lag is not None:
            self._followup_max_version_lag = followup_max_version_lag

    # Follow-ups

    def put_followups(self, session: FollowupSession) -> None:
        if session.queue:
            self._followups[session.request_id] = session

    def get_followups(self, request_id: str) -> Optional[FollowupSession]:
        return self._followups.get(request_id)

    def next_followup(self, uri: str, current_version: int) -> Optional[tuple[str, Edit]]:
        """Pop the next queued edit for a document.

        Sessions whose document advanced more than the allowed lag are
        discarded. Serving re-anchors the session at current_version.

        Returns:
            (request_id, edit) or None
        """
        for request_id, session in list(self._followups.items()):
            if session.uri != uri:
                continue
            lag = current_version - session.document_version_at_cache
            if lag < 0 or lag > self._followup_max_version_lag or not session.queue:
                logger.debug(f"Discarding follow-ups of {request_id} (lag {lag})")
                del self._followups[request_id]
                continue
            edit = session.queue.popleft()
            session.document_version_at_cache = current_version
            if not session.queue:
                del self._followups[request_id]
            return request_id, edit
        return None

    def has_followups(self, request_id: str) -> bool:
        session = self._followups.get(request_id)
        return session is not None and bool(session.queue)

    # Bindings

    def bind(self, binding_id: str, request_id: str, uri: str) -> None:
        self._bindings[binding_id] = BindingEntry(request_id=request_id, uri=uri)
        self._request_bindings.setdefault(request_id, set()).add(binding_id)

    def resolve_request(
        self, uri: str, binding_id: Optional[str] = None, request_id: Optional[str] = None
    ) -> Optional[str]:
        """Map a binding id (scoped to its document) or request id to a request id."""
        if binding_id is not None:
            entry = self._bindings.get(binding_id)
            if entry is not None and entry.uri == uri:
                return entry.request_id
        return request_id

    # Next actions

    def register_next_action(self, action: NextAction, key: Optional[str] = None) -> str:
        key = key or uuid.uuid4().hex
        self._next_actions[key] = action
        self._request_actions.setdefault(action.request_id, set()).add(key)
        return key

    def pop_next_action(self, key: Optional[str]) -> Optional[NextAction]:
        if key is None:
            return None
        action = self._next_actions.pop(key, None)
        if action is not None:
            keys = self._request_actions.get(action.request_id)
            if keys is not None:
                keys.discard(key)
        return action

    # Suggestions

    def remember_suggestion(self, suggestion: Suggestion) -> None:
        self._suggestions[suggestion.request_id] = suggestion

    def get_suggestion(self, request_id: str) -> Optional[Suggestion]:
        return self._suggestions.get(request_id)

    # Teardown

    def teardown(self, request_id: str) -> None:
        """Drop every entry belonging to a request."""
        self._followups.pop(request_id, None)
        self._suggestions.pop(request_id, None)
        for binding_id in self._request_bindings.pop(request_id, set()):
            self._bindings.pop(binding_id, None)
        for key in self._request_actions.pop(request_id, set()):
            self._next_actions.pop(key, None)

    def clear_document(self, uri: str) -> None:
        request_ids = {s.request_id for s in self._followups.values() if s.uri == uri}
        request_ids.update(b.request_id for b in self._bindings.values() if b.uri == uri)
        request_ids.update(s.request_id for s in self._suggestions.values() if s.uri == uri)
        for request_id in request_ids:
            self.teardown(request_id)

    def clear(self) -> None:
        self._followups.clear()
        self._bindings.clear()
        self._request_bindings.clear()
        self._next_actions.clear()
        self._request_actions.clear()
        self._suggestions.clear()

    @property
    def stats(self) -> dict[str, int]:
        return {
            "followup_sessions": len(self._followups),
            "bindings": len(self._bindings),
            "next_actions": len(self._next_actions),
            "suggestions": len(self._suggestions),
        }
