"""
Output Formatter for the Robust Validation CLI

Terminal output using the Rich library:
- Verdict tables for stress reports and go/no-go summaries
- Success/error/warning messages on stderr
- Pre-rendered reports passed through to stdout unchanged

Rendered reports (tables and JSON documents) are written to stdout as plain
text so they can be redirected into files byte-for-byte; everything else
goes to stderr.
"""

import json
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Global console instances
console = Console()
err_console = Console(stderr=True, soft_wrap=True)

VERDICT_STYLES = {
    "PASS": "bold green",
    "GO": "bold green",
    "FAIL": "bold red",
    "NO_GO": "bold red",
}


class OutputFormatter:
    """Format and display CLI output"""

    def __init__(self, output_format: str = 'table', color_enabled: bool = True):
        """
        Initialize output formatter

        Args:
            output_format: Output format (table, json)
            color_enabled: Enable colored output
        """
        self.output_format = output_format
        self.console = Console(color_system='auto' if color_enabled else None)

    def print_rendered(self, text: str):
        """
        Print a rendered report exactly as given

        Args:
            text: Table or JSON text (already newline-terminated)
        """
        print(text, end="")

    def print_json(self, data: Any):
        """
        Print data as JSON

        Args:
            data: Data to print as JSON
        """
        print(json.dumps(data, indent=2, ensure_ascii=False))

    def print_verdict_table(self, rows: List[Dict[str, Any]], title: Optional[str] = None):
        """
        Print section verdicts with their fail reasons

        Args:
            rows: [{'section': ..., 'verdict': ..., 'reasons': [...]}]
            title: Optional table title
        """
        if self.output_format == 'json':
            self.print_json(rows)
            return

        table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold cyan")
        table.add_column("Section", style="white")
        table.add_column("Verdict")
        table.add_column("Fail Reasons", style="dim")

        for row in rows:
            verdict = row.get('verdict', '')
            table.add_row(
                row.get('section', ''),
                f"[{VERDICT_STYLES.get(verdict, 'white')}]{verdict}[/]",
                ", ".join(row.get('reasons') or []) or "-",
            )

        self.console.print(table)

    def print_key_value(self, data: Dict[str, Any], title: Optional[str] = None):
        """
        Print key-value pairs

        Args:
            data: Dictionary of key-value pairs
            title: Optional title
        """
        if self.output_format == 'json':
            self.print_json(data)
            return

        table = Table(title=title, box=box.SIMPLE, show_header=False, padding=(0, 2))
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Value", style="white")

        for key, value in data.items():
            table.add_row(key, self._format_value(value))

        self.console.print(table)

    def _format_value(self, value: Any) -> str:
        """
        Format value for display

        Args:
            value: Value to format

        Returns:
            Formatted string
        """
        if value is None:
            return "[dim]N/A[/dim]"
        elif isinstance(value, bool):
            return "[green]Yes[/green]" if value else "[red]No[/red]"
        elif isinstance(value, float):
            return f"{value:.4f}"
        elif isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value)
        return str(value)


# Convenience functions
def print_success(message: str):
    """Print success message"""
    err_console.print(f"[green]✓[/green] {escape(message)}", highlight=False)


def print_error(message: str, details: Optional[str] = None):
    """Print error message"""
    err_console.print(f"[red]✗[/red] {escape(message)}", style="bold red", highlight=False)
    if details:
        err_console.print(f"  {escape(details)}", style="dim", highlight=False)


def print_warning(message: str):
    """Print warning message"""
    err_console.print(f"[yellow]⚠[/yellow] {escape(message)}", highlight=False)


def print_info(message: str):
    """Print info message"""
    err_console.print(f"[blue]ℹ[/blue] {escape(message)}", highlight=False)
