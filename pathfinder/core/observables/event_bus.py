import threading
import uuid
from collections import defaultdict
from typing import Callable, Dict, Union


class EventBus:
    """A simple thread-safe event bus that allows for subscribing to and emitting events.

    Example::

        from pathfinder.core import EventBus

        bus = EventBus()

        def handler(**kwargs):
            print(kwargs)

        bus.subscribe("completed", handler)
        bus.emit("completed", job_id="1", queue="route:optimization")

        # Output:
        # {'job_id': '1', 'queue': 'route:optimization'}

        bus.unsubscribe("completed", handler)
        bus.emit("completed", job_id="1", queue="route:optimization")

        # Output:
        # No output
    """

    def __init__(self):
        self._subscribers: Dict[str, Dict[str, Callable]] = defaultdict(dict)
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, handler: Callable) -> str:
        """Subscribe to an event.

        Args:
            event_name: The name of the event to subscribe to.
            handler: The handler to call when the event is emitted.

        Returns:
            The handler ID.
        """
        handler_id = str(uuid.uuid4())
        with self._lock:
            self._subscribers[event_name][handler_id] = handler
        return handler_id

    def unsubscribe(self, event_name: str, handler_or_id: Union[Callable, str]):
        """Unsubscribe from an event.

        Args:
            event_name: The name of the event to unsubscribe from.
            handler_or_id: The handler or ID to unsubscribe from.
        """
        with self._lock:
            subs = self._subscribers[event_name]
            if isinstance(handler_or_id, str):
                subs.pop(handler_or_id, None)
            else:
                for k, v in list(subs.items()):
                    if v == handler_or_id:
                        subs.pop(k)

    def emit(self, event_name: str, **kwargs):
        """Emit an event.

        Args:
            event_name: The name of the event to emit.
            **kwargs: The keyword arguments to pass to the handlers.
        """
        with self._lock:
            handlers = list(self._subscribers[event_name].values())
        for handler in handlers:
            handler(**kwargs)
