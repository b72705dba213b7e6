"""
Transfers buffers larger than one report as a series of commands, each carrying an offset.
"""
import logging

from viable import settings
from viable.errors import DecodeError
from viable.protocol.decoder import Decoder, FixedWidthArray, RawBytes, ScalarByOffset
from viable.protocol.wrapper import PAYLOAD_SIZE, SubProtocol, be16, le16

logger = logging.getLogger(__name__)

# [echo][offset:LE16][actual size] precedes the data in a chunk response
CHUNK_HEADER_SIZE = 4
MAX_CHUNK_SIZE = PAYLOAD_SIZE - CHUNK_HEADER_SIZE


def _chunk_size(chunk_size):
    chunk_size = settings.chunk_size if chunk_size is None else chunk_size
    if not 0 < chunk_size <= MAX_CHUNK_SIZE:
        raise ValueError("chunk size must be between 1 and %d, not %d" % (MAX_CHUNK_SIZE, chunk_size))
    return chunk_size


def chunk_echo(command, offset):
    """ accepts chunk responses that echo the command and the requested offset """
    def validate(payload):
        return payload[0] == command and int.from_bytes(payload[1:3], 'little') == offset
    return validate


def fetch_chunked(protocol, size_command, chunk_command, size_decoder: Decoder=None, chunk_size=None,
                  max_size=None, sub_protocol=SubProtocol.extension) -> bytes:
    """
    Reads a buffer whose size is reported by size_command, in chunks requested with
    [chunk_command][offset:LE16][requested size].

    Each response is [echo][offset:LE16][actual size][data...]. Reading stops at the first chunk shorter
    than requested, or when the reported size has been read.
    :param size_decoder: reads the total size from the size response, a 32-bit value after the echo by default
    :param max_size: the largest total size accepted
    :raises DecodeError: if the reported size exceeds max_size, or a chunk declares more bytes than requested
    """
    chunk_size = _chunk_size(chunk_size)
    size_decoder = size_decoder or ScalarByOffset(32, offset=1)
    total = protocol.send_command(sub_protocol, size_command, decoder=size_decoder).value()
    if max_size is not None and total > max_size:
        raise DecodeError("reported size %d exceeds the limit of %d bytes" % (total, max_size))
    logger.debug("fetching %d bytes with command 0x%02x", total, chunk_command)

    accumulated = bytearray()
    offset = 0
    while len(accumulated) < total:
        requested = min(chunk_size, total - offset)
        response = protocol.send_command(sub_protocol, chunk_command, [le16(offset), requested],
                                         validator=chunk_echo(chunk_command, offset)).value()
        actual = response[3]
        if actual > requested:
            raise DecodeError("chunk at offset %d declares %d bytes, more than the %d requested" %
                              (offset, actual, requested))
        accumulated += response[CHUNK_HEADER_SIZE:CHUNK_HEADER_SIZE + actual]
        offset += actual
        if actual < requested:
            break
    return bytes(accumulated)


def push_chunked(protocol, command, buffer, total_size=None, chunk_size=None, sub_protocol=SubProtocol.legacy):
    """
    Writes the first total_size bytes of buffer as [command][offset:LE16][chunk], where every chunk is
    chunk_size bytes, the last one zero padded.
    """
    chunk_size = _chunk_size(chunk_size)
    buffer = bytes(buffer)
    total_size = len(buffer) if total_size is None else total_size
    if total_size > len(buffer):
        raise ValueError("total size %d exceeds the %d byte buffer" % (total_size, len(buffer)))
    futures = []
    for offset in range(0, total_size, chunk_size):
        chunk = buffer[offset:min(offset + chunk_size, total_size)]
        chunk += bytes(chunk_size - len(chunk))
        futures.append(protocol.send_command(sub_protocol, command, [le16(offset), chunk]))
    for f in futures:
        f.value()
    logger.debug("pushed %d bytes in %d chunks with command 0x%02x", total_size, len(futures), command)


def fetch_legacy_buffer(protocol, command, size, decoder: Decoder=None, check_complete=None, chunk_size=None):
    """
    Reads a legacy buffer such as the keymap, requesting [command][offset:BE16][size] for each chunk.

    Each response is decoded with decoder, the bytes after the 4 byte header by default. The final short
    chunk keeps only the elements it requested, the rest of the payload is padding.
    :param check_complete: called with the values read so far. Returning True stops the transfer early.
    :return: bytes for a RawBytes decoder, otherwise a list of the decoded values
    """
    chunk_size = _chunk_size(chunk_size)
    decoder = decoder or RawBytes(skip=CHUNK_HEADER_SIZE)
    element_size = decoder.element_size if isinstance(decoder, FixedWidthArray) else 1
    raw = isinstance(decoder, RawBytes)
    accumulated = bytearray() if raw else []
    for offset in range(0, size, chunk_size):
        requested = min(chunk_size, size - offset)
        values = protocol.send_legacy(command, [be16(offset), requested], decoder).value()
        values = values[:requested // element_size]
        accumulated += values
        if check_complete is not None and check_complete(accumulated):
            break
    return bytes(accumulated) if raw else accumulated
