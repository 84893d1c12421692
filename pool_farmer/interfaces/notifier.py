"""Notifier protocol — where exit alerts and cycle summaries are delivered."""
from typing import Protocol


class Notifier(Protocol):
    """A delivery channel for engine messages.

    ``send_alert`` carries position exits and yield reports. ``send_log``
    carries the per-cycle summary and is delivered quietly by default.
    Both return False when the channel rejects the message; transport
    errors propagate and are logged by the scheduler.
    """

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
