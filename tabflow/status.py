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

"""Status rendering for a host editor's diagnostics command."""

import time
from typing import Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table

from tabflow.completion.protocol import SessionStatistics
from tabflow.config.settings import ServerConfig, TabSettings


def _na(value) -> str:
    return "N/A" if value is None else str(value)


def statistics_table(stats: SessionStatistics) -> Table:
    """Build a table of session counters."""
    table = Table(title="Session Statistics", show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for name, value in stats.to_dict().items():
        table.add_row(name.replace("_", " ").capitalize(), str(value))
    return table


def server_config_panel(config: Optional[ServerConfig], now: Optional[float] = None) -> Panel:
    """Build a panel describing the server tuning response."""
    if config is None:
        return Panel("[dim]Server config not yet fetched[/]", title="Server Configuration")

    age = int((now if now is not None else time.time()) - config.fetched_at)
    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Fetched", f"{age}s ago")
    table.add_row("Is On", _na(config.is_on))
    table.add_row("Ghost Text", _na(config.is_ghost_text))
    table.add_row("Fused Cursor Prediction", _na(config.is_fused_cursor_prediction_model))
    table.add_row("Allows Tab Chunks", _na(config.allows_tab_chunks))
    table.add_row("Above Radius", f"{_na(config.above_radius)} lines")
    table.add_row("Below Radius", f"{_na(config.below_radius)} lines")
    table.add_row("Global Debounce", f"{_na(config.global_debounce_ms)}ms")
    table.add_row("Client Debounce", f"{_na(config.client_debounce_ms)}ms")

    heuristics = Table(title=f"Heuristics ({len(config.heuristics)})", show_header=False, box=None)
    heuristics.add_column("Name")
    if config.heuristics:
        for name in config.heuristics:
            heuristics.add_row(f"- {name}")
    else:
        heuristics.add_row("[dim](none enabled)[/]")

    return Panel(Group(table, heuristics), title="Server Configuration", border_style="cyan")


def settings_table(settings: TabSettings) -> Table:
    """Build a table of the effective timing settings."""
    table = Table(title="Effective Settings", show_header=True, header_style="bold cyan")
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    table.add_row("Client debounce", f"{settings.debounce.client_debounce_ms}ms")
    table.add_row("Total debounce", f"{settings.debounce.total_debounce_ms}ms")
    table.add_row("Max concurrent streams", str(settings.debounce.max_concurrent_streams))
    table.add_row("Sync debounce", f"{settings.sync.sync_debounce_ms}ms")
    table.add_row("Drift threshold", str(settings.sync.drift_threshold))
    table.add_row(
        "Heuristics", ", ".join(h.value for h in settings.heuristics.enabled_heuristics) or "-"
    )
    return table


def render_status(
    stats: SessionStatistics,
    settings: TabSettings,
    server_config: Optional[ServerConfig] = None,
    console: Optional[Console] = None,
) -> Console:
    """Print statistics, settings and server config.

    Returns:
        The console printed to
    """
    console = console or Console()
    console.print(statistics_table(stats))
    console.print(settings_table(settings))
    console.print(server_config_panel(server_config))
    return console
