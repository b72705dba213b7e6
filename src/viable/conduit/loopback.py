"""
An in-memory conduit. Reports written to it are handed to a responder, and whatever the responder
returns is delivered back to the subscriber as inbound reports. Used to exercise the protocol engine
without hardware.
"""
import logging

from viable.conduit.base import ReportConduit
from viable.errors import DeviceConnectionError
from viable.protocol.wrapper import pad

logger = logging.getLogger(__name__)


class LoopbackConduit(ReportConduit):

    def __init__(self, responder=None, target='loopback', product_name=None, serial_number=None):
        """
        :param responder: callable receiving each written report and returning an iterable of reports to deliver
        """
        super().__init__()
        self.responder = responder
        self._target = target
        self._product_name = product_name
        self._serial_number = serial_number
        self._open = True
        self.written = []

    @property
    def target(self):
        return self._target

    @property
    def product_name(self):
        return self._product_name

    @property
    def serial_number(self):
        return self._serial_number

    @property
    def open(self) -> bool:
        return self._open

    def write(self, report: bytes):
        if not self._open:
            raise DeviceConnectionError("loopback %s is closed" % self._target)
        report = bytes(report)
        self.written.append(report)
        if self.responder is not None:
            for response in self.responder(report) or ():
                self._deliver(pad(response))

    def inject(self, report):
        """ delivers a report as if the device had sent it unprompted. """
        self._deliver(pad(report))

    def unplug(self, cause=None):
        """ simulates the device being removed """
        self._open = False
        self._lost(cause or DeviceConnectionError("loopback %s unplugged" % self._target))

    def close(self):
        self._open = False
