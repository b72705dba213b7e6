"""
Implements a conduit over a raw HID interface using hidapi.
"""

import logging

import hid

from viable import settings
from viable.conduit.base import ReportConduit
from viable.errors import DeviceConnectionError
from viable.protocol.futures import AsyncLoop
from viable.protocol.wrapper import REPORT_SIZE

logger = logging.getLogger(__name__)

# the raw HID interface exposed by VIA-compatible firmware
VIABLE_USAGE_PAGE = 0xFF60
VIABLE_USAGE = 0x61
VIABLE_SERIAL_PREFIX = 'viable:'


class DeviceFilter:
    """ Selects HID interfaces from hid.enumerate(). Fields left as None match anything. """

    def __init__(self, vendor_id=None, product_id=None, usage_page=VIABLE_USAGE_PAGE, usage=VIABLE_USAGE):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.usage_page = usage_page
        self.usage = usage

    def matches(self, info: dict) -> bool:
        """
        >>> DeviceFilter(0x1234).matches({'vendor_id': 0x1234, 'usage_page': 0xFF60, 'usage': 0x61})
        True
        >>> DeviceFilter(0x1234).matches({'vendor_id': 0x1234, 'usage_page': 0x01, 'usage': 0x06})
        False
        """
        for key in ('vendor_id', 'product_id', 'usage_page', 'usage'):
            wanted = getattr(self, key)
            if wanted is not None and info.get(key) != wanted:
                return False
        return True

    def __repr__(self):
        return "DeviceFilter(vendor_id=%r, product_id=%r, usage_page=%r, usage=%r)" % \
            (self.vendor_id, self.product_id, self.usage_page, self.usage)


default_filters = (DeviceFilter(),)


def hid_device_info():
    """
    :return: a tuple of the device info dicts for all attached HID interfaces
    """
    return tuple(hid.enumerate())


def find_devices(filters=None, devices=None):
    """
    Finds the attached interfaces that match any of the filters. An interface listed more than once
    is returned once.
    :param filters: DeviceFilter instances, default_filters when not given
    :param devices: device info dicts to search, all attached interfaces when not given
    """
    filters = filters or default_filters
    devices = hid_device_info() if devices is None else devices
    found = {}
    for info in devices:
        if any(f.matches(info) for f in filters):
            found.setdefault(info.get('path'), info)
    return list(found.values())


def is_viable_serial(serial) -> bool:
    """
    >>> is_viable_serial("viable:0123")
    True
    >>> is_viable_serial(None)
    False
    """
    return (serial or "").startswith(VIABLE_SERIAL_PREFIX)


class HidConduit(ReportConduit):
    """
    A conduit over one hidapi device. A background thread polls for input reports and delivers them to
    the subscriber. A read or write error is treated as the device having been unplugged.
    """

    def __init__(self, info: dict, device_factory=None, poll_interval=None):
        """
        :param info: the device info dict from hid.enumerate()
        :param device_factory: creates the unopened device, hid.device by default
        :param poll_interval: the read timeout in seconds, which bounds how long close() waits for the reader
        """
        super().__init__()
        self.info = info
        self._device_factory = device_factory or hid.device
        self._device = None
        poll_interval = settings.read_poll_interval if poll_interval is None else poll_interval
        self._poll_ms = max(1, int(poll_interval * 1000))
        self._reader = AsyncLoop(self._read_report, log=logger, name='viable-reader')

    @property
    def target(self):
        return self.info.get('path')

    @property
    def product_name(self):
        return self.info.get('product_string')

    @property
    def serial_number(self):
        return self.info.get('serial_number')

    @property
    def open(self) -> bool:
        return self._device is not None

    def connect(self):
        """ opens the device and starts reading input reports. """
        if self._device is not None:
            return
        device = self._device_factory()
        try:
            device.open_path(self.info['path'])
        except (OSError, ValueError) as e:
            raise DeviceConnectionError("unable to open %s" % (self.target,)) from e
        self._device = device
        self.disconnected.reset()
        self._reader.start()
        logger.info("opened %s (%s)", self.product_name, self.target)

    def write(self, report: bytes):
        device = self._device
        if device is None:
            raise DeviceConnectionError("device %s is not open" % (self.target,))
        try:
            # hidapi expects the report id as the first byte
            written = device.write(b'\x00' + bytes(report))
        except (OSError, ValueError) as e:
            self._lost(e)
            raise DeviceConnectionError("write to %s failed" % (self.target,)) from e
        if written is not None and written < 0:
            error = DeviceConnectionError("write to %s failed" % (self.target,))
            self._lost(error)
            raise error

    def _read_report(self):
        device = self._device
        if device is None:
            self._reader.stop()
            return
        try:
            data = device.read(REPORT_SIZE, self._poll_ms)
        except (OSError, ValueError) as e:
            self._reader.stop()
            if self._device is device:
                self._lost(e)
            return
        if data:
            self._deliver(data)

    def close(self):
        device = self._device
        self._device = None
        self._reader.stop()
        if device is not None:
            device.close()
            logger.info("closed %s", self.target)
