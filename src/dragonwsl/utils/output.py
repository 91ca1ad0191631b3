"""Rich terminal output utilities for dragonwsl.

This module provides formatted output using the Rich library,
including record tables, drift reports, spinners, and color-coded status.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

import yaml
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from dragonwsl.models.vm import VMState

if TYPE_CHECKING:
    from dragonwsl.core.engine import DriftReport, RecordStatus, UpdateResult, UpgradePlan

# Global console instance
console = Console()
error_console = Console(stderr=True)


class OutputFormat(str, Enum):
    """Supported output formats."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


class OutputFormatter:
    """Handles formatting and outputting data in various formats.

    Supports table, JSON, and YAML output formats with color-coded
    status indicators for Rich table output.

    Args:
        format_type: Output format to use (table, json, yaml).
        output_console: Rich console instance for output.

    Example:
        >>> formatter = OutputFormatter(OutputFormat.TABLE)
        >>> formatter.print_status(engine.status())
        >>> formatter.print_drift(engine.check_drift())
    """

    def __init__(
        self,
        format_type: OutputFormat = OutputFormat.TABLE,
        output_console: Console | None = None,
    ) -> None:
        self.format_type = format_type
        self.console = output_console or console

    def _print_data(self, data: Any) -> None:
        if self.format_type == OutputFormat.JSON:
            self.console.print_json(json.dumps(data, indent=2, default=str))
        else:
            self.console.print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))

    def print_status(self, statuses: Sequence[RecordStatus]) -> None:
        """Print records together with the state of their VMs.

        Args:
            statuses: Records paired with inventory entries.
        """
        if self.format_type != OutputFormat.TABLE:
            data = []
            for status in statuses:
                item = status.record.to_display_dict()
                item["vm_state"] = status.vm.state.value if status.vm else "missing"
                data.append(item)
            self._print_data(data)
            return

        table = Table(title="WSL VMs", show_header=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Image", style="white")
        table.add_column("Current", style="green")
        table.add_column("Latest", style="yellow")
        table.add_column("VM", style="dim")
        table.add_column("Status", justify="center")

        for status in statuses:
            record = status.record
            latest = Text(record.latest_tag)
            if record.update_available:
                latest.stylize("bold yellow")
            if status.vm is None:
                vm_text = Text("✗ missing", style="red")
            else:
                vm_text = format_vm_state(status.vm.state)

            table.add_row(
                record.name,
                record.image_reference,
                record.current_tag,
                latest,
                record.vm_identifier,
                vm_text,
            )

        self.console.print(table)

    def print_update_results(self, results: Sequence[UpdateResult]) -> None:
        """Print the outcome of a registry refresh.

        Args:
            results: One result per checked record.
        """
        if self.format_type != OutputFormat.TABLE:
            self._print_data(
                [
                    {
                        "name": r.name,
                        "current_tag": r.current_tag,
                        "previous_latest_tag": r.previous_tag,
                        "latest_tag": r.latest_tag,
                        "upgrade_available": r.upgrade_available,
                    }
                    for r in results
                ]
            )
            return

        table = Table(title="Registry Check", show_header=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Current", style="green")
        table.add_column("Latest", style="yellow")
        table.add_column("Upgrade", justify="center")

        for result in results:
            upgrade = Text("available", style="bold yellow") if result.upgrade_available else Text("-")
            table.add_row(result.name, result.current_tag, result.latest_tag, upgrade)

        self.console.print(table)

    def print_upgrade_plans(self, plans: Sequence[UpgradePlan]) -> None:
        """Print what an upgrade would do without doing it.

        Args:
            plans: One plan per record.
        """
        if self.format_type != OutputFormat.TABLE:
            self._print_data(
                [
                    {
                        "name": p.name,
                        "policy": p.policy.value,
                        "current_tag": p.current_tag,
                        "target_tag": p.target_tag,
                        "old_vm": p.old_identifier,
                        "new_vm": p.new_identifier,
                        "steps": p.describe(),
                    }
                    for p in plans
                ]
            )
            return

        table = Table(title="Upgrade Plan", show_header=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("From", style="green")
        table.add_column("To", style="yellow")
        table.add_column("Steps", style="white")

        for plan in plans:
            table.add_row(plan.name, plan.current_tag, plan.target_tag, plan.describe())

        self.console.print(table)

    def print_drift(self, report: DriftReport) -> None:
        """Print records without VMs and VMs left behind by upgrades.

        Args:
            report: Drift report from the engine.
        """
        if self.format_type != OutputFormat.TABLE:
            self._print_data(
                {
                    "missing": [r.to_display_dict() for r in report.missing],
                    "stray": [
                        {
                            "record": s.record_name,
                            "vm": s.vm.name,
                            "state": s.vm.state.value,
                            "pending_upgrade": s.pending_upgrade,
                        }
                        for s in report.stray
                    ],
                }
            )
            return

        if not report.has_drift:
            print_success("Records and WSL inventory agree")
            return

        table = Table(title="Drift", show_header=True)
        table.add_column("Record", style="cyan", no_wrap=True)
        table.add_column("VM", style="white")
        table.add_column("Problem", style="yellow")

        for record in report.missing:
            table.add_row(record.name, record.vm_identifier, Text("VM missing", style="red"))
        for stray in report.stray:
            problem = "upgrade target left behind" if stray.pending_upgrade else "unreferenced VM"
            table.add_row(stray.record_name, stray.vm.name, problem)

        self.console.print(table)


def print_success(message: str) -> None:
    """Print a success message.

    Args:
        message: Success message to display.
    """
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message to stderr.

    Args:
        message: Error message to display.
    """
    error_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def create_spinner_progress() -> Progress:
    """Create a simple spinner progress for indeterminate operations.

    Returns:
        Progress instance with just spinner and description.
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=error_console,
        transient=True,
    )


def format_vm_state(state: VMState) -> Text:
    """Format a VM state with color coding.

    Args:
        state: VM state to format.

    Returns:
        Rich Text object with color styling.
    """
    text = Text(f"{state.symbol} {state.value}")
    text.stylize(state.color)
    return text
