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

"""Bounded per-document queue of edit events awaiting sync."""

import logging
from collections import deque
from typing import Optional

from tabflow.completion.protocol import ContentChange, EditDelta, SyncRecord, TextDocument

logger = logging.getLogger(__name__)


class UpdateQueue:
    """Append-only queue of SyncRecords per document, oldest dropped first."""

    def __init__(self, max_length: int = 30, logger: Optional[logging.Logger] = None):
        self._max_length = max_length
        self._queues: dict[str, deque[SyncRecord]] = {}
        self._logger = logger or logging.getLogger(__name__)

    @property
    def max_length(self) -> int:
        return self._max_length

    def resize(self, max_length: int) -> None:
        """Change the per-document bound, dropping the oldest records if needed."""
        if max_length == self._max_length:
            return
        self._max_length = max_length
        for uri, queue in self._queues.items():
            self._queues[uri] = deque(queue, maxlen=max_length)

    def append(self, uri: str, record: SyncRecord) -> None:
        queue = self._queues.get(uri)
        if queue is None:
            queue = deque(maxlen=self._max_length)
            self._queues[uri] = queue
        if len(queue) == self._max_length:
            self._logger.debug(f"Update queue full for {uri}, dropping v{queue[0].model_version}")
        queue.append(record)

    def record_change(self, document: TextDocument, changes: list[ContentChange]) -> SyncRecord:
        """Queue an editor change event for a post-edit document snapshot.

        Args:
            document: Document after the change was applied
            changes: Content changes of the event

        Returns:
            The queued record
        """
        record = SyncRecord(
            model_version=document.version,
            path=document.path,
            updates=[EditDelta.from_change(change) for change in changes],
            expected_length=len(document.text),
        )
        self.append(document.uri, record)
        return record

    def get_updates(self, uri: str, min_version_exclusive: Optional[int] = None) -> list[SyncRecord]:
        """Records newer than a version, oldest first."""
        queue = self._queues.get(uri)
        if not queue:
            return []
        if min_version_exclusive is None:
            return list(queue)
        return [record for record in queue if record.model_version > min_version_exclusive]

    def drop_through(self, uri: str, version: int) -> None:
        """Forget records the service has acknowledged."""
        queue = self._queues.get(uri)
        if queue is None:
            return
        remaining = [record for record in queue if record.model_version > version]
        if remaining:
            self._queues[uri] = deque(remaining, maxlen=self._max_length)
        else:
            del self._queues[uri]

    def clear(self, uri: str) -> None:
        self._queues.pop(uri, None)

    def size(self, uri: str) -> int:
        queue = self._queues.get(uri)
        return len(queue) if queue else 0
