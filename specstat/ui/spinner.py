"""Spinner for sequential, single-repository phases."""

from typing import Optional

from rich.console import Console
from rich.status import Status


class SpinnerManager:
    """Start/succeed/fail spinner on top of rich's Status.

    Falls back to plain lines when quiet or when the console is not a
    terminal. Only one spinner may run at a time, so concurrent work
    reports through a Reporter instead.
    """

    def __init__(self, console: Optional[Console] = None, quiet: bool = False):
        self.console = console or Console(stderr=True)
        self.quiet = quiet
        self._status: Optional[Status] = None
        self._text = ""

    @property
    def animated(self) -> bool:
        return not self.quiet and self.console.is_terminal

    def start(self, text: str) -> None:
        self.stop()
        self._text = text
        if self.animated:
            self._status = self.console.status(text)
            self._status.start()
        else:
            self.console.print(f"[blue]{text}[/blue]")

    def stop(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def _finish(self, text: Optional[str], style: str, mark: str) -> None:
        was_animated = self._status is not None
        self.stop()
        if was_animated or text:
            self.console.print(f"[{style}]{mark} {text or self._text}[/{style}]")

    def succeed(self, text: Optional[str] = None) -> None:
        self._finish(text, "green", "✔")

    def fail(self, text: Optional[str] = None) -> None:
        self._finish(text, "red", "✖")

    def warn(self, text: Optional[str] = None) -> None:
        self._finish(text, "yellow", "⚠")
