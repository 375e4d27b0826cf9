"""
Yes/no confirmation for destructive commands
Rich prompt on a terminal, plain [y/N] line on anything else
"""
import sys
from typing import Optional, TextIO

from rich.console import Console
from rich.prompt import Confirm


class Confirmer:
    """Asks the operator before something is deleted"""

    def __init__(self, console: Optional[Console] = None, stdin: Optional[TextIO] = None,
                 interactive: Optional[bool] = None):
        self.console = console or Console()
        self.stdin = stdin or sys.stdin
        if interactive is None:
            interactive = hasattr(self.stdin, "isatty") and self.stdin.isatty()
        self.interactive = interactive

    def confirm(self, message: str) -> bool:
        if self.interactive:
            try:
                return Confirm.ask(message, console=self.console, default=False)
            except (EOFError, KeyboardInterrupt):
                return False
        return self._confirm_text(message)

    def confirm_bulk(self, message: str, count: int) -> bool:
        """One prompt for a multi-record delete; a single record needs no extra prompt"""
        if count <= 1:
            return True
        if self.interactive:
            self.console.print("[dim]This action cannot be undone[/dim]")
        return self.confirm(message)

    def _confirm_text(self, message: str) -> bool:
        self.console.print(f"{message} [y/N]: ", end="", markup=False, highlight=False)
        line = self.stdin.readline()
        if not line:
            return False
        return line.strip().lower() in ("y", "yes")


class AutoConfirmer:
    """Answers every prompt the same way, for --force paths and tests"""

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.prompts = []

    def confirm(self, message: str) -> bool:
        self.prompts.append(message)
        return self.answer

    def confirm_bulk(self, message: str, count: int) -> bool:
        self.prompts.append(message)
        return True if count <= 1 else self.answer
