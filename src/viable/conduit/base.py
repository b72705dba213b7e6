import logging
from abc import abstractmethod

from viable.support.events import OnceEventSource

logger = logging.getLogger(__name__)


class ReportConduit:
    """
    A conduit exchanges fixed-size reports with one device. Outbound reports are written synchronously;
    inbound reports are delivered to a single subscriber, usually from a background thread.

    The subscriber must be in place before anything is written, or the reply may be delivered to nobody.
    Losing the device fires the `disconnected` event once, with the cause.
    """

    def __init__(self):
        self._listener = None
        self.disconnected = OnceEventSource()

    @property
    @abstractmethod
    def target(self):
        """ the underlying device, for logging """
        raise NotImplementedError

    @property
    def product_name(self):
        """ the product string reported by the device, if known """
        return None

    @property
    def serial_number(self):
        return None

    @property
    @abstractmethod
    def open(self) -> bool:
        """ determines if reports can be written to this conduit """
        raise NotImplementedError

    def connect(self):
        """ starts delivering reports. Conduits that are usable once created need not override this. """

    @abstractmethod
    def write(self, report: bytes):
        """ sends one report to the device.
        :raises DeviceConnectionError: if the conduit is closed or the write fails
        """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """ releases the device. Closing a closed conduit has no effect. """
        raise NotImplementedError

    def subscribe(self, listener):
        """ sets the single listener that receives each inbound report as bytes. """
        if self._listener is not None and self._listener != listener:
            raise ValueError("conduit %s already has a subscriber" % (self.target,))
        self._listener = listener

    def unsubscribe(self):
        self._listener = None

    def _deliver(self, report):
        listener = self._listener
        if listener is None:
            logger.debug("no subscriber, dropping report from %s", self.target)
            return
        listener(bytes(report))

    def _lost(self, cause):
        """ called when the device went away. Notifies disconnect handlers once. """
        if self.disconnected.fire(cause):
            logger.warning("lost device %s: %s", self.target, cause)
