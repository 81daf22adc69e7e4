"""Library for reading and writing Blizzard's BLP texture format."""
from .blp import (
    BLP, AlphaType, Encoding, FilterMode, Header, MipLevel, Pixel, PixelFormat, TextureType,
    Version,
)
from .errors import (
    BLPError, DimensionMismatch, HeaderError, MipError, MipRangeOutOfBounds, TruncatedHeader,
    TruncatedJpegHeader, TruncatedPalette, UnknownMagic, UnknownTextureType, UnsupportedEncoding,
    VariantError,
)
from .jpeg import JpegCodec, JpegError, JpegImage, PillowJpegCodec


__version__ = '1.0.0'
__all__ = [
    '__version__',
    'BLP', 'MipLevel', 'Pixel', 'Header',
    'Version', 'TextureType', 'Encoding', 'AlphaType', 'PixelFormat', 'FilterMode',

    'BLPError', 'HeaderError', 'UnknownMagic', 'UnknownTextureType', 'TruncatedHeader',
    'VariantError', 'TruncatedJpegHeader', 'TruncatedPalette',
    'MipError', 'MipRangeOutOfBounds', 'DimensionMismatch', 'UnsupportedEncoding',

    'JpegCodec', 'JpegError', 'JpegImage', 'PillowJpegCodec',
]
