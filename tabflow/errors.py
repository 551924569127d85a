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

"""Exception hierarchy for tabflow.

Errors only cross the backend boundary. Everything facing the editor
resolves to a neutral result (no suggestion, no sync) and is logged.
"""

from typing import Optional


class TabflowError(Exception):
    """Base class for all tabflow errors."""


class BackendError(TabflowError):
    """The remote completion service rejected or failed a call."""


class StreamFailureError(BackendError):
    """A completion stream reported failure while being polled."""

    def __init__(self, reason: str, request_id: Optional[str] = None):
        self.reason = reason
        self.request_id = request_id
        message = f"Stream failed: {reason}"
        if request_id:
            message = f"Stream {request_id} failed: {reason}"
        super().__init__(message)


class StreamTimeoutError(StreamFailureError):
    """A completion stream produced no terminator before the deadline."""
