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

"""Document content helpers used when building requests."""

import hashlib
import random
import secrets
from dataclasses import dataclass
from typing import Optional

BASE62_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
WORKSPACE_ID_LENGTH = 22


@dataclass
class TruncatedContent:
    """Document content reduced to a window around the cursor."""

    contents: str
    contents_start_at_line: int  # 0-indexed first line inside the window
    total_lines: int


def calculate_sha256(content: str) -> str:
    """Hex SHA-256 of the document text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def truncate_around_cursor(
    content: str, cursor_line: int, radius: int = 300, eol: str = "\n"
) -> TruncatedContent:
    """Blank out lines far from the cursor.

    Lines outside [cursor_line - radius, cursor_line + radius] become
    empty strings so line numbers stay stable for the service.

    Args:
        content: Full document text
        cursor_line: 0-indexed cursor line
        radius: Lines kept on each side of the cursor
        eol: Line terminator of the document

    Returns:
        TruncatedContent with the windowed text
    """
    lines = content.split(eol)
    total = len(lines)
    if total < radius * 2:
        return TruncatedContent(contents=content, contents_start_at_line=0, total_lines=total)

    start = max(0, cursor_line - radius)
    end = min(total, cursor_line + radius)
    windowed = [line if start <= i < end else "" for i, line in enumerate(lines)]
    return TruncatedContent(
        contents=eol.join(windowed), contents_start_at_line=start, total_lines=total
    )


def should_send_hash(
    rely_on_file_sync: bool, check_percent: float, rng: Optional[random.Random] = None
) -> bool:
    """Whether a request should carry a content hash.

    Always when the service reconstructs the document from deltas,
    otherwise with probability check_percent for drift detection.
    """
    if rely_on_file_sync:
        return True
    if check_percent <= 0:
        return False
    return (rng or random).random() < check_percent


def generate_workspace_id(length: int = WORKSPACE_ID_LENGTH) -> str:
    """Random base62 identifier for a workspace."""
    return "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))
