"""
The device facade used by applications: opens one keyboard, owns the protocol stack built on it, and
tears it all down on close or when the keyboard is unplugged.
"""
import json
import logging
import lzma
import threading

from viable import settings
from viable.conduit.base import ReportConduit
from viable.conduit.hid_conduit import HidConduit, find_devices, is_viable_serial
from viable.errors import AmbiguousDeviceError, CommandTimeout, DecodeError, DeviceConnectionError
from viable.protocol import chunked
from viable.protocol.decoder import PackedStruct, RawBytes
from viable.protocol.exchange import ReportExchanger
from viable.protocol.lease import ClientLeaseManager
from viable.protocol.viable import ExtensionCommands, LegacyCommands, ViableProtocol
from viable.support.events import EventSource
from viable.support.mixins import CommonEqualityMixin

logger = logging.getLogger(__name__)

LAYER_COLOR_CHANNEL = 0
LAYER_COLOR_VALUE_ID_BASE = 32
LAYER_COUNT = 16


class KeyboardInfo(CommonEqualityMixin):
    """ the response to the extension get_info command """

    response_format = PackedStruct('<BIQB')

    def __init__(self, protocol_version, uid, feature_flags):
        self.protocol_version = protocol_version
        self.uid = uid
        self.feature_flags = feature_flags

    @property
    def keyboard_id(self):
        """ the uid as 16 hex digits, most significant first """
        return '%016x' % self.uid

    @classmethod
    def decode(cls, payload):
        _, protocol_version, uid, feature_flags = cls.response_format.decode(payload)
        return cls(protocol_version, uid, feature_flags)

    def __repr__(self):
        return "KeyboardInfo(protocol_version=%d, keyboard_id=%s, feature_flags=0x%02x)" % \
            (self.protocol_version, self.keyboard_id, self.feature_flags)


class ViableDevice:
    """
    One keyboard. open() picks the device, and commands can then be sent. The client lease is acquired by
    the first command, not by open().

    Handlers registered with add_disconnect_handler are called with the cause when the open device is lost.
    Work in progress at that time fails with DeviceConnectionError.
    """

    def __init__(self, conduit_factory=HidConduit, find=find_devices, timeout=None, **lease_options):
        """
        :param conduit_factory: creates the conduit for the device info returned by find
        :param find: returns the device infos matching a list of DeviceFilters
        :param timeout: the default command timeout
        :param lease_options: passed to ClientLeaseManager
        """
        self.conduit_factory = conduit_factory
        self.find = find
        self.timeout = timeout
        self.lease_options = lease_options
        self.disconnected = EventSource()
        self.conduit = None
        self.exchanger = None
        self.lease = None
        self.protocol = None
        self._lock = threading.Lock()

    @property
    def is_open(self):
        return self.protocol is not None

    def open(self, filters=None) -> bool:
        """
        Opens the one attached device that matches the filters, closing any device already open.
        :raises AmbiguousDeviceError: if no device, or more than one, matches
        """
        matches = self.find(filters)
        if len(matches) != 1:
            raise AmbiguousDeviceError(matches)
        self.attach(self.conduit_factory(matches[0]))
        return True

    def attach(self, conduit: ReportConduit):
        """ builds the protocol stack on an already created conduit and connects it """
        self.close()
        exchanger = ReportExchanger(conduit)
        lease = ClientLeaseManager(exchanger, **self.lease_options)
        protocol = ViableProtocol(exchanger, lease, self.timeout)
        conduit.disconnected.add(lambda cause: self._conduit_lost(conduit, cause))
        try:
            conduit.connect()
        except Exception as e:
            exchanger.abort(e)
            raise
        with self._lock:
            self.conduit, self.exchanger, self.lease, self.protocol = conduit, exchanger, lease, protocol
        logger.info("opened %s (%s)", conduit.product_name, conduit.target)

    def close(self):
        """ closes the device. In-flight and queued commands fail with DeviceConnectionError. """
        if self._teardown(DeviceConnectionError("device closed")):
            logger.info("closed device")

    def _teardown(self, error, conduit=None):
        with self._lock:
            if self.conduit is None or (conduit is not None and conduit is not self.conduit):
                return False
            conduit, exchanger, lease = self.conduit, self.exchanger, self.lease
            self.conduit = self.exchanger = self.lease = self.protocol = None
        lease.reset()
        exchanger.abort(error)
        conduit.close()
        return True

    def _conduit_lost(self, conduit, cause):
        if self._teardown(DeviceConnectionError("device disconnected: %s" % (cause,)), conduit):
            self.disconnected.fire(cause)

    def add_disconnect_handler(self, handler):
        self.disconnected.add(handler)

    def remove_disconnect_handler(self, handler):
        self.disconnected.remove(handler)

    def _protocol(self) -> ViableProtocol:
        protocol = self.protocol
        if protocol is None:
            raise DeviceConnectionError("no device is open")
        return protocol

    @property
    def device_name(self):
        conduit = self.conduit
        return conduit.product_name if conduit is not None else None

    @property
    def is_viable_device(self):
        """ True when the USB serial number carries the viable: prefix """
        conduit = self.conduit
        return conduit is not None and is_viable_serial(conduit.serial_number)

    def send_legacy(self, command, args=(), decoder=None, validator=None, timeout=None):
        return self._protocol().send_legacy(command, args, decoder, validator, timeout)

    def send_extension(self, command, args=(), decoder=None, validator=None, timeout=None):
        return self._protocol().send_extension(command, args, decoder, validator, timeout)

    def get_entries(self, command, count, decoder=None, echo_index=False):
        return self._protocol().get_entries(command, count, decoder, echo_index)

    def fetch_chunked(self, size_command, chunk_command, size_decoder=None, max_size=None) -> bytes:
        return chunked.fetch_chunked(self._protocol(), size_command, chunk_command, size_decoder, max_size=max_size)

    def push_chunked(self, command, buffer, total_size=None):
        chunked.push_chunked(self._protocol(), command, buffer, total_size)

    def fetch_legacy_buffer(self, command, size, decoder=None, check_complete=None):
        return chunked.fetch_legacy_buffer(self._protocol(), command, size, decoder, check_complete)

    def get_info(self) -> KeyboardInfo:
        return KeyboardInfo.decode(self.send_extension(ExtensionCommands.get_info).value())

    def get_definition(self):
        """ fetches the keyboard definition, stored on the device as LZMA compressed JSON """
        compressed = self.fetch_chunked(ExtensionCommands.definition_size, ExtensionCommands.definition_chunk,
                                        max_size=settings.max_definition_size)
        try:
            return json.loads(lzma.decompress(compressed).decode('utf-8'))
        except (lzma.LZMAError, ValueError) as e:
            raise DecodeError("keyboard definition of %d bytes is not valid: %s" % (len(compressed), e)) from e

    def custom_value_get(self, channel, value_id, size=2) -> bytes:
        """ reads a custom value. The response is [command][channel][value id][data...] """
        data = self.send_legacy(LegacyCommands.custom_get_value, [channel, value_id], RawBytes(skip=3),
                                validator=lambda payload: payload[1] == channel and payload[2] == value_id).value()
        return data[:size]

    def custom_value_set(self, channel, value_id, data):
        self.send_legacy(LegacyCommands.custom_set_value, [channel, value_id, bytes(data)]).value()

    def custom_value_save(self, channel):
        self.send_legacy(LegacyCommands.custom_save, [channel]).value()

    def get_layer_color(self, layer):
        """
        :return: (hue, saturation)
        """
        data = self.custom_value_get(LAYER_COLOR_CHANNEL, LAYER_COLOR_VALUE_ID_BASE + layer, 2)
        return data[0], data[1]

    def set_layer_color(self, layer, hue, sat):
        self.custom_value_set(LAYER_COLOR_CHANNEL, LAYER_COLOR_VALUE_ID_BASE + layer, [hue, sat])
        self.custom_value_save(LAYER_COLOR_CHANNEL)

    def get_all_layer_colors(self):
        """ the colors of all layers. A layer whose color cannot be read is given (0, 0). """
        colors = []
        for layer in range(LAYER_COUNT):
            try:
                colors.append(self.get_layer_color(layer))
            except (CommandTimeout, DecodeError) as e:
                logger.debug("no color for layer %d: %s", layer, e)
                colors.append((0, 0))
        return colors
