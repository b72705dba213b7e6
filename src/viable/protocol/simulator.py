"""
A scripted device that answers wrapped reports, for use as a LoopbackConduit responder.

It issues client ids to bootstrap requests and answers commands from registered handlers, echoing the
payload when no handler is registered. It can also serve a definition blob through the extension
definition commands, answer with error packets, stay silent, or emit reports addressed to other clients.
"""
import logging

from viable.protocol.viable import ERROR_MARKER, ExtensionCommands
from viable.protocol.wrapper import BOOTSTRAP_ERROR_ID, NONCE_OFFSET, NONCE_SIZE, NO_CLIENT, WRAPPER_PREFIX, \
    PAYLOAD_SIZE, SubProtocol, build_packet, client_id_of, is_wrapped, payload_of, pad

logger = logging.getLogger(__name__)


def bootstrap_response(nonce, client_id, ttl) -> bytes:
    return pad(bytes([WRAPPER_PREFIX]) + NO_CLIENT.to_bytes(4, 'little') + bytes(nonce) +
               client_id.to_bytes(4, 'little') + ttl.to_bytes(2, 'little'))


class SimulatedFirmware:
    """
    :ivar handlers: maps (sub_protocol, command) to a function taking the request payload and
        returning the response payload, or None for no response
    :ivar errors: maps (sub_protocol, command) to an error code sent back as [0xFF][code]
    :ivar silent: (sub_protocol, command) pairs that are never answered
    :ivar noise: reports emitted before every response, such as replies to other clients
    :ivar bootstrap_error: when set, bootstraps are refused with this code
    :ivar ignore_bootstraps: the number of bootstrap requests to leave unanswered
    """

    def __init__(self, first_client_id=7, ttl=120, definition=None):
        self.next_client_id = first_client_id
        self.ttl = ttl
        self.definition = definition
        self.clients = []
        self.handlers = {}
        self.errors = {}
        self.silent = set()
        self.noise = []
        self.bootstrap_error = None
        self.ignore_bootstraps = 0
        self.bootstrap_nonces = []
        self.requests = []

    @property
    def bootstraps(self):
        return len(self.bootstrap_nonces)

    def commands(self, sub_protocol=None):
        """ the payloads of the commands received, optionally only those for one sub-protocol """
        return [payload for tag, payload in self.requests if sub_protocol is None or tag == sub_protocol]

    def __call__(self, report):
        if not is_wrapped(report):
            return []
        client_id = client_id_of(report)
        if client_id == NO_CLIENT:
            response = self._bootstrap(report)
        elif client_id in self.clients:
            response = self._command(client_id, report[5], payload_of(report))
        else:
            logger.debug("simulator: ignoring report for unknown client 0x%08x", client_id)
            response = []
        return list(self.noise) + response if response else []

    def _bootstrap(self, report):
        nonce = bytes(report[NONCE_OFFSET:NONCE_OFFSET + NONCE_SIZE])
        self.bootstrap_nonces.append(nonce)
        if self.ignore_bootstraps:
            self.ignore_bootstraps -= 1
            return []
        if self.bootstrap_error is not None:
            return [bootstrap_response(nonce, BOOTSTRAP_ERROR_ID, self.bootstrap_error)]
        client_id = self.next_client_id
        self.next_client_id += 1
        self.clients.append(client_id)
        return [bootstrap_response(nonce, client_id, self.ttl)]

    def _command(self, client_id, tag, payload):
        key = (tag, payload[0])
        self.requests.append((tag, payload))
        if key in self.silent:
            return []
        if key in self.errors:
            reply = bytes([ERROR_MARKER, self.errors[key]])
        elif key in self.handlers:
            reply = self.handlers[key](payload)
            if reply is None:
                return []
        elif tag == SubProtocol.extension and self.definition is not None and \
                payload[0] in (ExtensionCommands.definition_size, ExtensionCommands.definition_chunk):
            reply = self._definition(payload)
        else:
            reply = payload
        return [build_packet(client_id, tag, bytes(reply)[:PAYLOAD_SIZE])]

    def _definition(self, payload):
        if payload[0] == ExtensionCommands.definition_size:
            return bytes([payload[0]]) + len(self.definition).to_bytes(4, 'little')
        offset = int.from_bytes(payload[1:3], 'little')
        data = self.definition[offset:offset + payload[3]]
        return bytes([payload[0]]) + payload[1:3] + bytes([len(data)]) + data
