import threading
from queue import Empty, Queue


class EventSource:
    """ A list of handlers that are each called with the arguments passed to fire().
        Handlers may be added and removed from any thread; fire() calls them on the
        thread that fires the event.
    """

    def __init__(self):
        self._handlers = []
        self._lock = threading.Lock()

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def add(self, handler):
        with self._lock:
            self._handlers.append(handler)
        return self

    def remove(self, handler):
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)
        return self

    def handlers(self):
        with self._lock:
            return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        self._fire(*args, **kwargs)

    def fire_all(self, events):
        self._fire_all(events)

    def _fire_all(self, events):
        for e in events:
            self._fire(e)

    def _fire(self, *args, **kwargs):
        for handler in self.handlers():
            handler(*args, **kwargs)


class QueuedEventSource(EventSource):
    """
    fire() posts the event to a queue rather than calling the handlers.
    The handlers are called when a thread calls publish(), so events raised on a
    background thread can be handled on a thread of the consumer's choosing.
    Only single-argument events are supported.
    """
    def __init__(self):
        super().__init__()
        self.event_queue = Queue()

    def fire(self, event):
        self.event_queue.put(event)

    def fire_all(self, events):
        for e in events:
            self.event_queue.put(e)

    def publish(self):
        """ publishes any queued events on the calling thread.
        :return: the number of events published
        """
        events = []
        while True:
            try:
                events.append(self.event_queue.get_nowait())
            except Empty:
                break
        self._fire_all(events)
        return len(events)
