"""
Observers of the transaction lifecycle.

Each :class:`TransactionManager` owns one :class:`EventNotifier`. Handlers
are called synchronously, in subscription order, once the database has
acknowledged the operation and before the manager hands the transaction back
to its caller.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

if TYPE_CHECKING:
    from txsandbox.transaction.base import Transaction

logger = logging.getLogger(__name__)


class TransactionEvent(Enum):
    STARTED = "transaction-started"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


EventHandler = Callable[["Transaction", Optional[str]], None]
EventName = Union[TransactionEvent, str]


class EventNotifier:
    """
    Dispatches ``(transaction, descriptor)`` pairs to subscribers.

    Usage:
        notifier = EventNotifier()
        notifier.subscribe(TransactionEvent.ROLLED_BACK, handler)
        notifier.subscribe("committed", other_handler)
    """

    def __init__(self) -> None:
        self._handlers: Dict[TransactionEvent, List[EventHandler]] = {
            event: [] for event in TransactionEvent
        }
        self._subscription_counter = 0

    def subscribe(self, event: EventName, handler: EventHandler) -> str:
        """
        Subscribe to one lifecycle event.

        Args:
            event: Event, or its name, to receive
            handler: Callback function(transaction, descriptor) -> None

        Returns:
            Subscription ID, empty if the handler was already subscribed
        """
        event = TransactionEvent(event)
        handlers = self._handlers[event]
        if handler in handlers:
            return ""

        handlers.append(handler)
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        logger.debug("Subscribed %s to %s", sub_id, event.value)
        return sub_id

    def unsubscribe(self, event: EventName, handler: EventHandler) -> bool:
        try:
            self._handlers[TransactionEvent(event)].remove(handler)
        except ValueError:
            return False
        return True

    def handlers(self, event: EventName) -> List[EventHandler]:
        return list(self._handlers[TransactionEvent(event)])

    def clear_handlers(self, event: Optional[EventName] = None) -> None:
        if event is None:
            events = list(TransactionEvent)
        else:
            events = [TransactionEvent(event)]
        for item in events:
            self._handlers[item].clear()

    def emit(
        self,
        event: EventName,
        transaction: Transaction,
        descriptor: Optional[str] = None,
    ) -> None:
        event = TransactionEvent(event)
        logger.debug(
            "Emitting %s for %s (%s)", event.value, transaction, descriptor
        )
        for handler in list(self._handlers[event]):
            try:
                handler(transaction, descriptor)
            except Exception:
                logger.exception("Handler failed for %s", event.value)
