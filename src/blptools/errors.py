"""Exceptions raised when reading or writing BLP files.

All errors derive from :py:class:`BLPError`, which is itself a :external:py:class:`ValueError`.
Errors specific to a single mipmap level derive from :py:class:`MipError`, and record the level
they occurred in so best-effort decoding can report them individually.
"""
from typing import Optional


__all__ = [
    'BLPError',
    'HeaderError', 'UnknownMagic', 'UnknownTextureType', 'TruncatedHeader',
    'VariantError', 'TruncatedJpegHeader', 'TruncatedPalette',
    'MipError', 'MipRangeOutOfBounds', 'DimensionMismatch', 'UnsupportedEncoding',
]


class BLPError(ValueError):
    """Base class for all errors produced when processing a BLP file."""


class HeaderError(BLPError):
    """The fixed-size header could not be parsed."""


class UnknownMagic(HeaderError):
    """The file does not start with one of the known version tags."""
    magic: bytes  #: The first four bytes of the file.

    def __init__(self, magic: bytes) -> None:
        super().__init__(f'Unknown BLP magic {magic!r}!')
        self.magic = magic


class UnknownTextureType(HeaderError):
    """The texture type is neither JPEG nor Direct."""
    value: int  #: The raw value read from the header.

    def __init__(self, value: int) -> None:
        super().__init__(f'Unknown BLP texture type {value}!')
        self.value = value


class TruncatedHeader(HeaderError):
    """The buffer ends before the header does."""
    expected: int  #: The number of bytes the header requires.
    actual: int  #: The size of the buffer.

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f'Truncated BLP header, expected {expected} bytes, got {actual}!')
        self.expected = expected
        self.actual = actual


class VariantError(BLPError):
    """The JPEG header chunk or palette following the header could not be read."""


class TruncatedJpegHeader(VariantError):
    """The shared JPEG header chunk extends past the end of the buffer."""
    declared: int  #: The length stored in the file.
    available: int  #: The number of bytes actually remaining.

    def __init__(self, declared: int, available: int) -> None:
        super().__init__(
            f'JPEG header chunk is {declared} bytes, but only {available} bytes remain!'
        )
        self.declared = declared
        self.available = available


class TruncatedPalette(VariantError):
    """There is not enough space for the 256-entry palette."""
    available: int  #: The number of bytes actually remaining.

    def __init__(self, available: int) -> None:
        super().__init__(f'Palette requires 1024 bytes, but only {available} bytes remain!')
        self.available = available


class MipError(BLPError):
    """An error which only affects a single mipmap level."""
    level: int  #: The mipmap level which failed.

    def __init__(self, level: int, message: str) -> None:
        super().__init__(message)
        self.level = level


class MipRangeOutOfBounds(MipError):
    """A mipmap offset/length pair points outside the buffer."""
    offset: int
    length: int
    size: int  #: The size of the source buffer.

    def __init__(self, level: int, offset: int, length: int, size: int) -> None:
        super().__init__(
            level,
            f'Mipmap {level} at 0x{offset:x} with length {length} '
            f'extends past the end of the {size}-byte file!',
        )
        self.offset = offset
        self.length = length
        self.size = size


class DimensionMismatch(MipError):
    """The raw data size is inconsistent with the nominal dimensions for this level.

    For Direct textures the sizes are byte counts, for JPEG textures they are pixel counts.
    """
    expected: int
    actual: int

    def __init__(self, level: int, expected: int, actual: int) -> None:
        super().__init__(level, f'Mipmap {level} should be {expected} in size, got {actual}!')
        self.expected = expected
        self.actual = actual


class UnsupportedEncoding(MipError):
    """The level uses a pixel layout this library cannot handle, or the JPEG codec failed."""
    reason: Optional[str]

    def __init__(self, level: int, reason: Optional[str] = None) -> None:
        if reason:
            super().__init__(level, f'Cannot decode mipmap {level}: {reason}')
        else:
            super().__init__(level, f'Cannot decode mipmap {level}!')
        self.reason = reason
