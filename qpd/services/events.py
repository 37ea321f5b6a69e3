"""
Change notification signals.

Emitted after a mutation has been committed so subscribers (sidebar caches,
websocket bridges) can refresh.  Delivery is synchronous and best-effort:
a failing receiver is logged and never undoes the committed change.

Usage:
    from qpd.services.events import process_changed

    @process_changed.connect
    def _refresh(sender, **extra):
        ...
"""

import logging

from blinker import Namespace

logger = logging.getLogger(__name__)

_signals = Namespace()

process_changed = _signals.signal("process-changed")
record_changed = _signals.signal("record-changed")


def emit(signal, sender, **payload) -> None:
    """Send ``signal`` and log, rather than propagate, receiver failures."""
    try:
        signal.send(sender, **payload)
    except Exception:
        logger.exception("Receiver for %s failed (sender=%s)", signal.name, sender)
