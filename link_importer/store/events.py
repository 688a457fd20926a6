"""Subscription interface for pending-batch changes."""

from dataclasses import dataclass
from typing import Awaitable, Callable

from rich.console import Console

from link_importer.models import PendingImportBatch

console = Console()


@dataclass(frozen=True)
class BatchChanged:
    """The pending import batch was written."""

    version: int
    batch: PendingImportBatch


BatchListener = Callable[[BatchChanged], Awaitable[None]]


class BatchEvents:
    """Delivers "import batch changed" events to subscribed listeners.

    Listeners are awaited in subscription order. A failing listener is
    reported and does not stop delivery to the others.
    """

    def __init__(self):
        self._listeners: list[BatchListener] = []

    def subscribe(self, listener: BatchListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: BatchListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, event: BatchChanged) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                console.print(f"[red]Batch listener {listener!r} failed: {e}[/red]")
