"""
Builds commands for the two sub-protocols carried by the wrapper and correlates their responses.

Every command first ensures there is a client lease, then is queued on the exchanger. When its turn comes
the packet is built with the current client id, written, and the first inbound report addressed to that
client id (and accepted by the optional validator) is taken as its response.
"""
import logging

from viable import settings
from viable.errors import ProtocolError
from viable.protocol.decoder import Decoder, RawBytes, decode
from viable.protocol.exchange import PendingRequest, ReportExchanger
from viable.protocol.futures import FutureValue
from viable.protocol.lease import ClientLeaseManager
from viable.protocol.wrapper import NO_CLIENT, PAYLOAD_SIZE, SubProtocol, build_packet, client_id_of, \
    encode_args, is_wrapped, payload_of

logger = logging.getLogger(__name__)

# payload byte 0 of an extension response that reports an error, the code follows in byte 1
ERROR_MARKER = 0xFF


class LegacyCommands:
    """ command ids of the legacy (VIA) command set """
    get_protocol_version = 0x01
    get_keyboard_value = 0x02
    set_keyboard_value = 0x03
    get_keycode = 0x04
    set_keycode = 0x05
    custom_set_value = 0x07
    custom_get_value = 0x08
    custom_save = 0x09
    macro_get_count = 0x0C
    macro_get_buffer_size = 0x0D
    macro_get_buffer = 0x0E
    macro_set_buffer = 0x0F
    get_layer_count = 0x11
    keymap_get_buffer = 0x12

    # value ids for get/set_keyboard_value
    layout_options = 0x02
    switch_matrix_state = 0x03


class ExtensionCommands:
    """ command ids of the extension (0xDF) command set """
    get_info = 0x00
    tap_dance_get = 0x01
    tap_dance_set = 0x02
    combo_get = 0x03
    combo_set = 0x04
    key_override_get = 0x05
    key_override_set = 0x06
    alt_repeat_key_get = 0x07
    alt_repeat_key_set = 0x08
    one_shot_get = 0x09
    one_shot_set = 0x0A
    save = 0x0B
    reset = 0x0C
    definition_size = 0x0D
    definition_chunk = 0x0E
    qmk_settings_query = 0x10
    qmk_settings_get = 0x11
    qmk_settings_set = 0x12
    qmk_settings_reset = 0x13
    leader_get = 0x14
    leader_set = 0x15
    layer_state_get = 0x16
    layer_state_set = 0x17
    fragment_get_hardware = 0x18
    fragment_get_selections = 0x19
    fragment_set_selections = 0x1A


def index_echo(index, position=1):
    """ a validator accepting responses that echo the requested index at the given payload position """
    def validate(payload):
        return payload[position] == index
    return validate


class ViableProtocol:
    """
    The request API for one device. send_* methods return a FutureValue for the decoded response;
    composite operations such as get_entries wait for their steps and return the result.
    Composite operations must not be called from the exchanger's worker thread.
    """

    def __init__(self, exchanger: ReportExchanger, lease: ClientLeaseManager, timeout=None):
        self.exchanger = exchanger
        self.lease = lease
        self.timeout = settings.command_timeout if timeout is None else timeout
        self.late_replies = 0
        exchanger.unsolicited.add(self._unsolicited)

    def send_command(self, sub_protocol, command, args=(), decoder: Decoder=None, validator=None,
                     timeout=None) -> FutureValue:
        """
        Queues a command.
        :param sub_protocol: SubProtocol.legacy or SubProtocol.extension
        :param args: ints and byte strings appended to the command id
        :param decoder: how to read the response payload, the raw payload by default
        :param validator: predicate on the response payload. Responses it rejects are skipped.
        :raises ValueError: if the command does not fit in one report
        """
        payload = encode_args(command, *args)
        if len(payload) > PAYLOAD_SIZE:
            raise ValueError("command 0x%02x has a %d byte payload, at most %d fit in a report" %
                             (command, len(payload), PAYLOAD_SIZE))
        granted = self.lease.ensure_lease()
        timeout = self.timeout if timeout is None else timeout
        return self.exchanger.submit(self._exchange, granted, sub_protocol, command, payload, decoder, validator,
                                     timeout)

    def send_legacy(self, command, args=(), decoder=None, validator=None, timeout=None) -> FutureValue:
        return self.send_command(SubProtocol.legacy, command, args, decoder, validator, timeout)

    def send_extension(self, command, args=(), decoder=None, validator=None, timeout=None) -> FutureValue:
        return self.send_command(SubProtocol.extension, command, args, decoder, validator, timeout)

    def _exchange(self, granted, sub_protocol, command, payload, decoder, validator, timeout):
        # the lease was queued ahead of this command so it is already settled
        lease = granted.value(0)
        client_id = self.lease.client_id or lease.client_id
        report = build_packet(client_id, sub_protocol, payload)
        pending = PendingRequest(self._response_matcher(client_id, sub_protocol, validator), timeout,
                                 name="command 0x%02x:%02x" % (sub_protocol, command))
        response = payload_of(self.exchanger.transact(report, pending))
        if sub_protocol == SubProtocol.extension and response[0] == ERROR_MARKER:
            raise ProtocolError(response[1], command)
        return decode(response, decoder)

    @staticmethod
    def _response_matcher(client_id, sub_protocol, validator):
        def matches(report):
            if not is_wrapped(report) or client_id_of(report) != client_id:
                return False
            payload = payload_of(report)
            if sub_protocol == SubProtocol.extension and payload[0] == ERROR_MARKER:
                return True
            return validator is None or validator(payload)
        return matches

    def _unsolicited(self, report):
        client_id = self.lease.client_id
        if client_id != NO_CLIENT and is_wrapped(report) and client_id_of(report) == client_id:
            # a reply that outlived its command's timeout. One arriving just as the next command is
            # installed would be taken as that command's response.
            self.late_replies += 1
            logger.warning("late reply for client 0x%08x with no request pending (%d so far): %s",
                           client_id, self.late_replies, report[:8].hex())
        else:
            logger.debug("ignoring unsolicited report %s", report[:8].hex())

    def get_entries(self, command, count, decoder: Decoder=None, echo_index=False, timeout=None):
        """
        Reads a table of entries with an extension command that takes the entry index as its argument.
        The response payload is [command][index][entry...].
        :param decoder: reads one entry, by default the bytes after the index
        :param echo_index: skip responses that do not echo the requested index
        :return: the decoded entries, in index order
        """
        decoder = decoder or RawBytes(skip=2)
        futures = [self.send_extension(command, [index], decoder, index_echo(index) if echo_index else None, timeout)
                   for index in range(count)]
        return [f.value() for f in futures]
