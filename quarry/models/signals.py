"""
Quarry Signals - entity life-cycle and migration hooks.

Provides a lightweight signal system for entity life-cycle events,
with priority ordering and sender filtering.

Usage:
    from quarry.models.signals import creating

    @creating.connect(sender=Account)
    def normalize_email(sender, instance, **kwargs):
        instance.email = instance.email.lower()

Receivers run in priority order and an exception raised by a receiver
propagates to the caller, aborting the operation that fired the signal.
Use ``send_robust`` where every receiver must run regardless.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Callable, List, Optional, Type

logger = logging.getLogger("quarry.models.signals")

__all__ = [
    "Signal",
    "creating",
    "created",
    "updating",
    "updated",
    "deleting",
    "deleted",
    "pre_migrate",
    "post_migrate",
    "LIFECYCLE_SIGNALS",
]


class Signal:
    """
    A signal that can be connected to receiver functions.

    Receivers receive:
        sender   - the entity class (or the migration manager)
        instance - the entity instance (if applicable)
        **kwargs - signal-specific keyword arguments

    A receiver connected with ``sender=SomeEntity`` only fires for that
    exact class.
    """

    def __init__(self, name: str):
        self.name = name
        # Each entry: (receiver, sender_filter, priority)
        self._receivers: List[tuple] = []

    def connect(
        self,
        receiver: Callable = None,
        *,
        sender: Optional[Type] = None,
        priority: int = 100,
    ):
        """
        Connect a receiver function. Can be used as a decorator.

        Args:
            receiver: Callable to invoke when signal fires
            sender: Optional sender class to filter on
            priority: Lower values run first (default: 100)
        """
        def _decorator(fn: Callable) -> Callable:
            self._add_receiver(fn, sender, priority)
            return fn

        if receiver is not None:
            self._add_receiver(receiver, sender, priority)
            return receiver
        return _decorator

    def _add_receiver(self, fn: Callable, sender: Optional[Type], priority: int) -> None:
        for existing, existing_sender, _ in self._receivers:
            if existing is fn and existing_sender is sender:
                return  # Already connected

        self._receivers.append((fn, sender, priority))
        # Stable sort keeps insertion order for ties
        self._receivers.sort(key=lambda x: x[2])

    def disconnect(self, receiver: Callable, *, sender: Optional[Type] = None) -> bool:
        """
        Disconnect a receiver.

        Returns True if the receiver was found and removed.
        """
        for i, (fn, s, _) in enumerate(self._receivers):
            if fn is receiver and (sender is None or s is sender):
                self._receivers.pop(i)
                return True
        return False

    def _live_for(self, sender: Any) -> List[Callable]:
        return [
            fn for fn, filter_sender, _ in self._receivers
            if filter_sender is None or sender is filter_sender
        ]

    def send(self, sender: Any, **kwargs: Any) -> List[Any]:
        """
        Fire the signal, calling all matching receivers in priority order.

        Returns:
            List of return values from receivers
        """
        return [fn(sender, **kwargs) for fn in self._live_for(sender)]

    def send_robust(self, sender: Any, **kwargs: Any) -> List[tuple]:
        """
        Fire the signal, catching exceptions from each receiver.

        Every receiver runs regardless. Returns a list of
        ``(receiver, response_or_exception)``.
        """
        results = []
        for fn in self._live_for(sender):
            try:
                results.append((fn, fn(sender, **kwargs)))
            except Exception as exc:
                logger.error(
                    f"Signal '{self.name}' receiver {getattr(fn, '__name__', fn)} "
                    f"raised {exc.__class__.__name__}: {exc}"
                )
                results.append((fn, exc))
        return results

    @property
    def receivers(self) -> List[Callable]:
        """List of connected receiver functions."""
        return [fn for fn, _, _ in self._receivers]

    def has_listeners(self, sender: Optional[Type] = None) -> bool:
        """Check if any receivers are connected (optionally for a sender)."""
        if sender is None:
            return bool(self._receivers)
        return bool(self._live_for(sender))

    @contextlib.contextmanager
    def connected(self, fn: Callable, *, sender: Optional[Type] = None, priority: int = 100):
        """
        Context manager for temporary signal connection.

        Usage:
            with creating.connected(my_handler, sender=Account):
                Account.create({"name": "Ana"})
        """
        self._add_receiver(fn, sender, priority)
        try:
            yield
        finally:
            self.disconnect(fn, sender=sender)

    def clear(self) -> None:
        """Remove all receivers (useful for testing)."""
        self._receivers.clear()

    def __repr__(self) -> str:
        return f"<Signal '{self.name}' receivers={len(self._receivers)}>"


# ── Entity life-cycle signals ────────────────────────────────────────────────

creating = Signal("creating")
created = Signal("created")
updating = Signal("updating")
updated = Signal("updated")
deleting = Signal("deleting")
deleted = Signal("deleted")

LIFECYCLE_SIGNALS = {
    "creating": creating,
    "created": created,
    "updating": updating,
    "updated": updated,
    "deleting": deleting,
    "deleted": deleted,
}

# ── Migration signals ────────────────────────────────────────────────────────

pre_migrate = Signal("pre_migrate")
post_migrate = Signal("post_migrate")
