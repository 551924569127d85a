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

"""tabflow - client-side engine for streaming AI code completions.

Packages:
- completion: admission, streaming, validation, caching, orchestration
- sync: incremental and full document sync with the completion service
- config: pydantic settings and server tuning
"""

from tabflow.config.settings import ConfigProvider, ServerConfig, TabSettings
from tabflow.errors import (
    BackendError,
    StreamFailureError,
    StreamTimeoutError,
    TabflowError,
)
from tabflow.manager import TabCompletionManager

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "ConfigProvider",
    "ServerConfig",
    "StreamFailureError",
    "StreamTimeoutError",
    "TabCompletionManager",
    "TabSettings",
    "TabflowError",
]
