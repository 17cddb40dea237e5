"""Leveled operator output rendered with Rich."""
from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape


@dataclass(slots=True)
class Reporter:
    """Print info/warn/error/success lines for the operator.

    Orchestrators receive a reporter rather than printing directly so tests
    can capture output with a recording console.
    """

    console: Console = field(default_factory=Console)

    def info(self, message: str) -> None:
        """Print an informational line."""
        self.console.print(f"[cyan][INFO][/cyan] {escape(message)}")

    def warn(self, message: str) -> None:
        """Print a warning line."""
        self.console.print(f"[yellow][WARN][/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        """Print an error line."""
        self.console.print(f"[red][ERROR][/red] {escape(message)}")

    def success(self, message: str) -> None:
        """Print a success line."""
        self.console.print(f"[green][SUCCESS][/green] {escape(message)}")

    def rule(self, title: str = "") -> None:
        """Print a horizontal separator."""
        self.console.rule(title)

    def text(self, message: str = "") -> None:
        """Print a plain line without a level prefix."""
        self.console.print(escape(message))


__all__ = ["Reporter"]
