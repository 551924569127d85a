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

"""Recent change history per document, sent as diff context."""

from collections import deque
from typing import Optional

from tabflow.completion.protocol import ContentChange

MAX_SNIPPET_CHARS = 256


class DocumentHistory:
    """Keeps the last few change snippets for each document."""

    def __init__(self, max_entries: int = 10):
        self._max_entries = max_entries
        self._history: dict[str, deque[str]] = {}

    def record(self, uri: str, changes: list[ContentChange]) -> None:
        history = self._history.setdefault(uri, deque(maxlen=self._max_entries))
        for change in changes:
            history.append(format_change(change))

    def get(self, uri: str, limit: Optional[int] = None) -> list[str]:
        entries = list(self._history.get(uri, ()))
        if limit is not None:
            entries = entries[-limit:]
        return entries

    def clear(self, uri: str) -> None:
        self._history.pop(uri, None)


def format_change(change: ContentChange) -> str:
    """One-line description of a change, e.g. "12:4 +'foo()'"."""
    start = change.range.start
    location = f"{start.line + 1}:{start.character + 1}"
    text = change.text[-MAX_SNIPPET_CHARS:]
    if change.range_length and not text:
        return f"{location} -{change.range_length}"
    if change.range_length:
        return f"{location} -{change.range_length} +{text!r}"
    return f"{location} +{text!r}"
