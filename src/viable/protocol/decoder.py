"""
Decoders turn a response payload (the bytes after the wrapper header) into a value.

Each decode shape is its own class, carrying only the fields it needs and validated at construction:

- RawBytes: the payload bytes, optionally skipping a leading command echo.
- FixedWidthArray: unsigned 8/16/32-bit elements filling the rest of the payload.
- ScalarByOffset: one unsigned value read at a byte offset.
- PackedStruct: a format string of B/H/I/Q field codes with an optional < or > endianness marker.

The decoders are also encoders, so that request arguments and synthetic responses can be built with
the same description that will be used to read them back.
"""
import struct
from abc import abstractmethod

from viable.errors import DecodeError
from viable.support.mixins import ValueObjectMixin

_width_codes = {8: 'B', 16: 'H', 32: 'I'}
_struct_codes = 'BHIQ'


def _endian(big_endian):
    return '>' if big_endian else '<'


def _check_width(width):
    if width not in _width_codes:
        raise ValueError("width must be one of 8, 16 or 32, not %r" % (width,))
    return width // 8


def _check_non_negative(name, value):
    if value < 0:
        raise ValueError("%s must not be negative" % name)


class Decoder(ValueObjectMixin):
    """ Converts a payload into a value. Decoders are immutable value objects. """

    @abstractmethod
    def decode(self, data):
        """
        :param data: the response payload
        :raises DecodeError: if the payload is too short for this shape
        """
        raise NotImplementedError


class Encoder:
    @abstractmethod
    def encode(self, value) -> bytes:
        """ Encodes a value so that decode(encode(value)) == value """
        raise NotImplementedError


class Codec(Decoder, Encoder):
    """ A decoder that can also produce the bytes it decodes. """


class RawBytes(Codec):
    def __init__(self, skip=0):
        _check_non_negative('skip', skip)
        self.skip = skip

    def decode(self, data):
        if self.skip > len(data):
            raise DecodeError("cannot skip %d bytes of a %d byte payload" % (self.skip, len(data)))
        return bytes(data[self.skip:])

    def encode(self, value):
        return bytes(self.skip) + bytes(value)


class FixedWidthArray(Codec):
    """
    Unsigned elements of one width, starting after skip bytes and running to the end of the payload.
    The start must be aligned to the element width; misaligned fields are read with PackedStruct.
    drop discards that many leading elements, such as a command header read as two 16-bit values.
    """

    def __init__(self, width, big_endian=False, skip=0, drop=0):
        size = _check_width(width)
        _check_non_negative('skip', skip)
        _check_non_negative('drop', drop)
        if skip % size:
            raise ValueError("skip of %d bytes is not aligned to %d-bit elements, use PackedStruct" % (skip, width))
        self.width = width
        self.big_endian = big_endian
        self.skip = skip
        self.drop = drop

    @property
    def element_size(self):
        return self.width // 8

    def _format(self, count):
        return _endian(self.big_endian) + _width_codes[self.width] * count

    def decode(self, data):
        available = len(data) - self.skip
        if available < 0:
            raise DecodeError("cannot skip %d bytes of a %d byte payload" % (self.skip, len(data)))
        count = available // self.element_size
        values = struct.unpack_from(self._format(count), data, self.skip)
        return list(values[self.drop:])

    def encode(self, value):
        values = [0] * self.drop + list(value)
        try:
            return bytes(self.skip) + struct.pack(self._format(len(values)), *values)
        except struct.error as e:
            raise ValueError("cannot encode %r as %d-bit values" % (value, self.width)) from e


class ScalarByOffset(Codec):
    """
    One unsigned value of the given width. offset is always a byte offset into the payload (after skip),
    for 16 and 32-bit widths as well as 8-bit, never an element index.
    """

    def __init__(self, width, offset=0, big_endian=False, skip=0):
        _check_width(width)
        _check_non_negative('offset', offset)
        _check_non_negative('skip', skip)
        self.width = width
        self.offset = offset
        self.big_endian = big_endian
        self.skip = skip

    @property
    def _format(self):
        return _endian(self.big_endian) + _width_codes[self.width]

    def decode(self, data):
        position = self.skip + self.offset
        if position + self.width // 8 > len(data):
            raise DecodeError("no %d-bit value at byte %d of a %d byte payload" % (self.width, position, len(data)))
        return struct.unpack_from(self._format, data, position)[0]

    def encode(self, value):
        try:
            return bytes(self.skip + self.offset) + struct.pack(self._format, value)
        except struct.error as e:
            raise ValueError("cannot encode %r as a %d-bit value" % (value, self.width)) from e


class PackedStruct(Codec):
    """
    Fields of mixed widths at consecutive, possibly unaligned, offsets.

    fmt holds field codes B (u8), H (u16), I (u32) and Q (u64) plus at most one endianness marker,
    < (the default) or >, which may appear anywhere in the string. When index is given, only that field
    is returned.

    >>> PackedStruct("B>H", index=1).decode(bytes([1, 0x12, 0x34]))
    4660
    """

    def __init__(self, fmt, skip=0, index=None):
        if '<' in fmt and '>' in fmt:
            raise ValueError("format %r has conflicting endianness markers" % fmt)
        codes = fmt.replace('<', '').replace('>', '')
        if not codes:
            raise ValueError("format %r has no fields" % fmt)
        for code in codes:
            if code not in _struct_codes:
                raise ValueError("unknown field code %r in format %r" % (code, fmt))
        _check_non_negative('skip', skip)
        if index is not None and not 0 <= index < len(codes):
            raise ValueError("index %d is outside the %d fields of %r" % (index, len(codes), fmt))
        self.fmt = fmt
        self.skip = skip
        self.index = index

    @property
    def _format(self):
        return _endian('>' in self.fmt) + self.fmt.replace('<', '').replace('>', '')

    @property
    def size(self):
        return struct.calcsize(self._format)

    def decode(self, data):
        if len(data) - self.skip < self.size:
            raise DecodeError("format %r needs %d bytes after skipping %d but the payload has %d" %
                              (self.fmt, self.size, self.skip, len(data)))
        values = struct.unpack_from(self._format, data, self.skip)
        return values[self.index] if self.index is not None else list(values)

    def encode(self, value):
        try:
            return bytes(self.skip) + struct.pack(self._format, *value)
        except struct.error as e:
            raise ValueError("cannot encode %r with format %r" % (value, self.fmt)) from e


def decode(data, decoder: Decoder=None):
    """ decodes a payload. Without a decoder the payload bytes are returned unchanged. """
    return (decoder or RawBytes()).decode(bytes(data))
