import threading


class EventSource(object):
    """ A list of handlers that are called with the arguments passed to fire().

    Handlers are usually added from application threads while events are fired from the
    background report reader, so the handler list is copied under a lock before firing.
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
            if handler not in self._handlers:
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
        for handler in self.handlers():
            handler(*args, **kwargs)

    def fire_all(self, events):
        for e in events:
            self.fire(e)


class OnceEventSource(EventSource):
    """
    Fires at most once until reset(). Used for notifications such as a device disconnect, where
    several code paths may detect the same condition but handlers must only hear about it once.
    """

    def __init__(self):
        super().__init__()
        self._fired = False

    @property
    def fired(self):
        return self._fired

    def fire(self, *args, **kwargs):
        with self._lock:
            if self._fired:
                return False
            self._fired = True
        super().fire(*args, **kwargs)
        return True

    def reset(self):
        with self._lock:
            self._fired = False
