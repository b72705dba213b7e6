"""
The 0xDD wrapper that multiplexes client ids and sub-protocols over one raw HID channel.

Every report is REPORT_SIZE bytes::

    [0xDD][client_id:LE32][sub_protocol][payload:26]

The bootstrap exchange is the exception: it carries a client id of 0 and the nonce takes the place of
the sub-protocol tag::

    request:  [0xDD][0x00000000][nonce:20]
    response: [0xDD][0x00000000][nonce:20][new_client_id:LE32][ttl_seconds:LE16]
"""
import logging

from viable.errors import BootstrapFailure

logger = logging.getLogger(__name__)

REPORT_SIZE = 32
WRAPPER_PREFIX = 0xDD
HEADER_SIZE = 6
PAYLOAD_SIZE = REPORT_SIZE - HEADER_SIZE

NONCE_SIZE = 20
NONCE_OFFSET = 5
BOOTSTRAP_ID_OFFSET = NONCE_OFFSET + NONCE_SIZE
BOOTSTRAP_TTL_OFFSET = BOOTSTRAP_ID_OFFSET + 4

NO_CLIENT = 0
BOOTSTRAP_ERROR_ID = 0xFFFFFFFF


class SubProtocol:
    """ sub-protocol tags carried in byte 5 of a wrapped report """
    legacy = 0xFE
    extension = 0xDF


def le16(value):
    """
    >>> list(le16(0x1234))
    [52, 18]
    """
    return (value & 0xFFFF).to_bytes(2, 'little')


def be16(value):
    """
    >>> list(be16(0x1234))
    [18, 52]
    """
    return (value & 0xFFFF).to_bytes(2, 'big')


def encode_args(*args) -> bytes:
    """construct a byte string from position arguments. Each argument is either an int, which becomes one byte,
    or an iterable of ints.

    >>> encode_args(0x5A, b"\\x42\\x43", [95])
    b'ZBC_'
    """
    b = bytearray()
    for arg in args:
        try:
            for val in arg:
                b.append(val & 0xFF)
        except TypeError:
            b.append(arg & 0xFF)
    return bytes(b)


def pad(data, size=REPORT_SIZE) -> bytes:
    if len(data) > size:
        raise ValueError("%d bytes do not fit in %d" % (len(data), size))
    return bytes(data) + bytes(size - len(data))


def build_packet(client_id, sub_protocol, payload) -> bytes:
    """ builds a wrapped report for the given client.

    >>> build_packet(7, SubProtocol.extension, b"\\x01")[:7].hex()
    'dd07000000df01'
    """
    if len(payload) > PAYLOAD_SIZE:
        raise ValueError("payload of %d bytes exceeds the %d available in a report" % (len(payload), PAYLOAD_SIZE))
    header = bytes([WRAPPER_PREFIX]) + client_id.to_bytes(4, 'little') + bytes([sub_protocol])
    return pad(header + bytes(payload))


def build_bootstrap_request(nonce) -> bytes:
    if len(nonce) != NONCE_SIZE:
        raise ValueError("nonce must be %d bytes" % NONCE_SIZE)
    return pad(bytes([WRAPPER_PREFIX]) + NO_CLIENT.to_bytes(4, 'little') + bytes(nonce))


def is_wrapped(report) -> bool:
    return len(report) >= HEADER_SIZE and report[0] == WRAPPER_PREFIX


def client_id_of(report) -> int:
    return int.from_bytes(report[1:5], 'little')


def payload_of(report) -> bytes:
    """ the sub-protocol payload, without the wrapper header and tag """
    return bytes(report[HEADER_SIZE:])


def bootstrap_matcher(nonce):
    """ creates a predicate that accepts only the bootstrap response that echoes the given nonce.

    Reports for other clients, and bootstrap responses for other clients' nonces, are expected on a shared
    channel and are rejected.
    """
    nonce = bytes(nonce)

    def matches(report):
        if not is_wrapped(report):
            logger.debug("bootstrap: ignoring report without wrapper prefix")
            return False
        client_id = client_id_of(report)
        if client_id != NO_CLIENT:
            logger.debug("bootstrap: ignoring report for client 0x%08x", client_id)
            return False
        if bytes(report[NONCE_OFFSET:BOOTSTRAP_ID_OFFSET]) != nonce:
            logger.debug("bootstrap: ignoring response to another client's nonce")
            return False
        return True
    return matches


def parse_bootstrap_response(report):
    """ extracts (client_id, ttl_seconds) from a bootstrap response that has already been matched to our nonce.
    :raises BootstrapFailure: when the device reports an error or issues an invalid id.
    """
    if len(report) < BOOTSTRAP_TTL_OFFSET + 2:
        raise BootstrapFailure("bootstrap response is too short (%d bytes)" % len(report))
    client_id = int.from_bytes(report[BOOTSTRAP_ID_OFFSET:BOOTSTRAP_TTL_OFFSET], 'little')
    if client_id == BOOTSTRAP_ERROR_ID:
        code = report[BOOTSTRAP_TTL_OFFSET]
        raise BootstrapFailure("bootstrap failed with error code %d" % code, code)
    if client_id == NO_CLIENT:
        raise BootstrapFailure("device issued the reserved client id 0")
    ttl = int.from_bytes(report[BOOTSTRAP_TTL_OFFSET:BOOTSTRAP_TTL_OFFSET + 2], 'little')
    return client_id, ttl
