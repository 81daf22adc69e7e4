"""Reads and writes Blizzard's texture format, BLP.

Three versions exist. ``BLP0`` and ``BLP1`` were used in Warcraft III, ``BLP2`` in World of Warcraft.
Textures are either JPEG-compressed, or "Direct" which covers palettes, DXT block compression and
raw BGRA pixels. Each file stores up to 16 mipmaps, at arbitrary offsets in the file.

This is designed to be used with the `Python Imaging Library`_ to do the editing of pixels or
saving/loading standard image files. JPEG data is handled by a :py:class:`~blptools.jpeg.JpegCodec`,
which also uses Pillow by default.

.. _`Python Imaging Library`: https://pillow.readthedocs.io/en/stable/
"""
from typing import (
    IO, TYPE_CHECKING, ClassVar, Dict, Final, Iterable, Iterator, List, Mapping, Optional,
    Sequence, Tuple, Type, Union,
)
from array import array
from enum import Enum, IntEnum
from io import BytesIO
from struct import Struct
import itertools
import struct

from typing_extensions import Buffer, TypeAlias, assert_never
import attrs

from . import binformat, logger
# noinspection PyProtectedMember
from . import _py_blp_readwrite as _format_funcs
from .errors import (
    DimensionMismatch, MipError, MipRangeOutOfBounds, TruncatedHeader, TruncatedJpegHeader,
    TruncatedPalette, UnknownMagic, UnknownTextureType, UnsupportedEncoding,
)
from .jpeg import JpegCodec, JpegError, JpegImage, PillowJpegCodec


# Only import while type checking, so Pillow is only loaded if actually used.
if TYPE_CHECKING:
    from PIL.Image import Image as PIL_Image

__all__ = [
    'BLP', 'MipLevel', 'Pixel',
    'Version', 'TextureType', 'Encoding', 'AlphaType', 'PixelFormat', 'FilterMode',
    'Header', 'HeaderLayout', 'HEADER_LAYOUTS',
    'JpegPrologue', 'DirectPrologue', 'VariantPayload', 'parse_variant', 'serialize_variant',
    'MipRange', 'resolve_mipmaps', 'mip_dimensions',
    'pixel_format', 'decode_level', 'build_palette',
]

LOGGER = logger.get_logger(__name__)
MAX_MIPMAPS: Final = 16
PALETTE_ENTRIES: Final = 256

# One black, opaque pixel for creating blank images.
_BLANK_PIXEL = array('B', [0, 0, 0, 0xFF])


class Version(IntEnum):
    """The BLP versions. The value is the 4-byte magic, read as a big-endian integer."""
    BLP0 = 0x424C5030  #: Warcraft III Beta. Only a single image, mipmaps are in separate files.
    BLP1 = 0x424C5031  #: Warcraft III.
    BLP2 = 0x424C5032  #: World of Warcraft.

    @property
    def magic(self) -> bytes:
        """The signature at the start of the file."""
        return self.value.to_bytes(4, 'big')


class TextureType(IntEnum):
    """The two kinds of texture data."""
    JPEG = 0
    DIRECT = 1  #: Palettes, DXT compression or raw pixels.


class Encoding(IntEnum):
    """The encoding of Direct textures. This is only stored in BLP2, earlier versions use palettes."""
    PALETTE = 1
    DXT = 2
    BGRA = 3


class AlphaType(IntEnum):
    """For BLP2, specifies the block compression used. Other values are preserved, but not decodable."""
    DXT1 = 0
    DXT3 = 1
    DXT5 = 7
    BGRA = 8


class FilterMode(Enum):
    """The algorithm to use for generating mipmaps."""
    NEAREST = UPPER_LEFT = 0  #: Just use the upper-left pixel.
    UPPER_RIGHT = 1  #: Just use the upper-right pixel.
    LOWER_LEFT = 2  #: Just use the lower-left pixel.
    LOWER_RIGHT = 3  #: Just use the lower-right pixel.
    BILINEAR = AVERAGE = 4  #: Average the four pixels together.


class PixelFormat(Enum):
    """The layouts used for the pixel data of Direct textures.

    The value is the bits per pixel for the colour, bits per pixel for a separate alpha plane,
    and the number of bytes per 4x4 block for compressed formats.
    """
    def __init__(self, pixel_bits: int, alpha_bits: int, block_size: int) -> None:
        self.pixel_bits = pixel_bits
        self.alpha_bits = alpha_bits
        self.block_size = block_size

    P8 = (8, 0, 0)
    P8A1 = (8, 1, 0)
    P8A4 = (8, 4, 0)
    P8A8 = (8, 8, 0)
    DXT1 = (0, 0, 8)
    DXT1_ONEBITALPHA = (0, 1, 8)
    DXT3 = (0, 4, 16)
    DXT5 = (0, 8, 16)
    BGRA8888 = (32, 0, 0)

    @property
    def is_compressed(self) -> bool:
        """Checks if the format is compressed in 4x4 blocks."""
        return self.block_size > 0

    @property
    def uses_palette(self) -> bool:
        """Checks if pixels are indexes into the palette."""
        return self.pixel_bits == 8

    def frame_size(self, width: int, height: int) -> int:
        """Compute the number of bytes needed for this image size."""
        if self.is_compressed:
            blocks_wide, blocks_high = _format_funcs.block_counts(width, height)
            return self.block_size * blocks_wide * blocks_high
        count = width * height
        return (count * self.pixel_bits + 7) // 8 + (count * self.alpha_bits + 7) // 8


# Initialise the internal mapping in the format module.
_format_funcs.init(PixelFormat)

_PALETTE_FORMATS: Mapping[int, PixelFormat] = {
    0: PixelFormat.P8,
    1: PixelFormat.P8A1,
    4: PixelFormat.P8A4,
    8: PixelFormat.P8A8,
}


class AlphaLayout(Enum):
    """How the alpha configuration is stored in the header."""
    WORD = 'word'  #: A single 32-bit alpha bit depth.
    BYTES = 'bytes'  #: Encoding, alpha depth, alpha type and the mipmap flag as 4 bytes.


@attrs.frozen
class HeaderLayout:
    """Describes the header structure used by a specific version."""
    #: Everything following the magic.
    struct: Struct
    alpha: AlphaLayout
    #: If set, the ``extra`` and ``has_mipmaps`` 32-bit fields are present.
    legacy_fields: bool
    #: If set, the offset and length tables are present.
    mip_table: bool

    @property
    def size(self) -> int:
        """The total size of the header, including the magic."""
        return 4 + self.struct.size


HEADER_LAYOUTS: Final[Mapping[Version, HeaderLayout]] = {
    Version.BLP0: HeaderLayout(
        Struct(
            '<'
            'I'  # Texture type
            'I'  # Alpha bits
            'II'  # Width, height
            'II'  # Extra, has mipmaps
        ),
        AlphaLayout.WORD,
        legacy_fields=True,
        mip_table=False,
    ),
    Version.BLP1: HeaderLayout(
        Struct(
            '<'
            'I'  # Texture type
            'I'  # Alpha bits
            'II'  # Width, height
            'II'  # Extra, has mipmaps
            '16I'  # Offsets
            '16I'  # Lengths
        ),
        AlphaLayout.WORD,
        legacy_fields=True,
        mip_table=True,
    ),
    Version.BLP2: HeaderLayout(
        Struct(
            '<'
            'I'  # Texture type
            'BBBB'  # Encoding, alpha depth, alpha type, has mipmaps
            'II'  # Width, height
            '16I'  # Offsets
            '16I'  # Lengths
        ),
        AlphaLayout.BYTES,
        legacy_fields=False,
        mip_table=True,
    ),
}
_EMPTY_TABLE: Tuple[int, ...] = (0, ) * MAX_MIPMAPS


def _table_converter(values: Iterable[int]) -> Tuple[int, ...]:
    """Convert to a tuple of 16 integers."""
    table = tuple(values)
    if len(table) != MAX_MIPMAPS:
        raise ValueError(f'Mipmap tables must have {MAX_MIPMAPS} entries, not {len(table)}!')
    return table


@attrs.frozen
class Header:
    """The fixed-size header at the start of a BLP file.

    Fields which are not present in a version are ignored when serialising. All values are kept
    exactly as read, so re-serialising produces identical bytes.
    """
    version: Version
    texture_type: TextureType
    width: int
    height: int
    #: The bits of alpha per pixel. This should be 0, 1, 4 or 8.
    alpha_depth: int = 0
    #: The layout of Direct pixel data. This is always :py:attr:`Encoding.PALETTE` before BLP2.
    encoding: int = Encoding.PALETTE
    #: The DXT compression type, only used in BLP2.
    alpha_type: int = AlphaType.DXT1
    has_mipmaps: int = 0
    #: Legacy versions only, this seems to indicate team colour usage.
    extra: int = 0
    offsets: Tuple[int, ...] = attrs.field(default=_EMPTY_TABLE, converter=_table_converter)
    lengths: Tuple[int, ...] = attrs.field(default=_EMPTY_TABLE, converter=_table_converter)

    @property
    def layout(self) -> HeaderLayout:
        """The structure used for this version."""
        return HEADER_LAYOUTS[self.version]

    @property
    def size(self) -> int:
        """The size of the header in bytes."""
        return self.layout.size

    @classmethod
    def parse(cls, data: Buffer) -> 'Header':
        """Parse the header from the start of the buffer."""
        view = memoryview(data).cast('B')
        if view.nbytes < 4:
            raise TruncatedHeader(4, view.nbytes)
        [magic] = binformat.struct_read('>I', view)
        try:
            version = Version(magic)
        except ValueError:
            raise UnknownMagic(view[:4].tobytes()) from None

        layout = HEADER_LAYOUTS[version]
        try:
            values = iter(binformat.struct_read(layout.struct, view, 4))
        except struct.error:
            raise TruncatedHeader(layout.size, view.nbytes) from None

        raw_type = next(values)
        try:
            texture_type = TextureType(raw_type)
        except ValueError:
            raise UnknownTextureType(raw_type) from None

        extra = 0
        alpha_type: int = AlphaType.DXT1
        encoding: int = Encoding.PALETTE
        if layout.alpha is AlphaLayout.WORD:
            alpha_depth = next(values)
            has_mipmaps = 0
        elif layout.alpha is AlphaLayout.BYTES:
            encoding, alpha_depth, alpha_type, has_mipmaps = itertools.islice(values, 4)
        else:
            assert_never(layout.alpha)

        width = next(values)
        height = next(values)
        if layout.legacy_fields:
            extra = next(values)
            has_mipmaps = next(values)
        if layout.mip_table:
            offsets = tuple(itertools.islice(values, MAX_MIPMAPS))
            lengths = tuple(itertools.islice(values, MAX_MIPMAPS))
        else:
            offsets = lengths = _EMPTY_TABLE

        header = cls(
            version, texture_type,
            width, height,
            alpha_depth=alpha_depth,
            encoding=encoding,
            alpha_type=alpha_type,
            has_mipmaps=has_mipmaps,
            extra=extra,
            offsets=offsets,
            lengths=lengths,
        )
        LOGGER.debug(
            'Read {} {} header: {}x{}, alpha depth={}',
            version.name, texture_type.name, width, height, alpha_depth,
        )
        return header

    def serialize(self) -> bytes:
        """Produce the binary form of the header."""
        layout = self.layout
        values: List[int] = [self.texture_type.value]
        if layout.alpha is AlphaLayout.WORD:
            values.append(self.alpha_depth)
        elif layout.alpha is AlphaLayout.BYTES:
            values += [self.encoding, self.alpha_depth, self.alpha_type, self.has_mipmaps]
        else:
            assert_never(layout.alpha)
        values += [self.width, self.height]
        if layout.legacy_fields:
            values += [self.extra, self.has_mipmaps]
        if layout.mip_table:
            values += self.offsets
            values += self.lengths
        return self.version.magic + layout.struct.pack(*values)


@attrs.frozen
class JpegPrologue:
    """For JPEG textures, the JPEG header shared by every mipmap."""
    header: bytes

    @property
    def size(self) -> int:
        """The size of this in the file, including the length prefix."""
        return 4 + len(self.header)


@attrs.frozen
class DirectPrologue:
    """For Direct textures, the palette. Each entry is BGRA bytes, packed as a little-endian integer."""
    entries: Tuple[int, ...] = attrs.field(converter=tuple)

    @entries.validator
    def _check_count(self, attribute: 'attrs.Attribute[Tuple[int, ...]]', value: Tuple[int, ...]) -> None:
        if len(value) != PALETTE_ENTRIES:
            raise ValueError(f'Palettes must have {PALETTE_ENTRIES} entries, not {len(value)}!')

    size: ClassVar[int] = 4 * PALETTE_ENTRIES

    @classmethod
    def from_colours(cls, colours: Sequence[Tuple[int, int, int]]) -> 'DirectPrologue':
        """Build a palette from RGB colours. Unused entries are filled with black."""
        if len(colours) > PALETTE_ENTRIES:
            raise ValueError(f'Palettes can only have {PALETTE_ENTRIES} colours, not {len(colours)}!')
        entries = [0xFF000000 | r << 16 | g << 8 | b for (r, g, b) in colours]
        entries += [0xFF000000] * (PALETTE_ENTRIES - len(entries))
        return cls(entries)

    def colour(self, index: int) -> Tuple[int, int, int, int]:
        """Return the (r, g, b, a) colour for this palette index."""
        value = self.entries[index]
        return (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF, (value >> 24) & 0xFF

    def to_bytes(self) -> bytes:
        """Return the palette as 1024 bytes of BGRA data."""
        return binformat.write_array('<I', self.entries)


VariantPayload: TypeAlias = Union[JpegPrologue, DirectPrologue]
BLANK_PALETTE: Final = DirectPrologue([0] * PALETTE_ENTRIES)


def parse_variant(data: Buffer, texture_type: TextureType, offset: int) -> VariantPayload:
    """Read the JPEG header or palette, which immediately follows the main header."""
    view = memoryview(data).cast('B')
    available = max(0, view.nbytes - offset)
    if texture_type is TextureType.JPEG:
        if available < binformat.SIZE_INT:
            raise TruncatedJpegHeader(binformat.SIZE_INT, available)
        [size] = binformat.struct_read('<I', view, offset)
        available -= binformat.SIZE_INT
        if size > available:
            raise TruncatedJpegHeader(size, available)
        start = offset + binformat.SIZE_INT
        return JpegPrologue(view[start:start + size].tobytes())
    elif texture_type is TextureType.DIRECT:
        if available < DirectPrologue.size:
            raise TruncatedPalette(available)
        return DirectPrologue(binformat.read_array('<I', view[offset:offset + DirectPrologue.size]))
    else:
        assert_never(texture_type)


def serialize_variant(payload: VariantPayload) -> bytes:
    """Produce the binary form of the JPEG header or palette."""
    if isinstance(payload, JpegPrologue):
        return struct.pack('<I', len(payload.header)) + payload.header
    elif isinstance(payload, DirectPrologue):
        return payload.to_bytes()
    else:
        assert_never(payload)


def mip_dimensions(width: int, height: int, level: int) -> Tuple[int, int]:
    """Compute the size of a mipmap level. Each level halves the size, but never goes below 1."""
    return max(1, width >> level), max(1, height >> level)


@attrs.frozen
class MipRange:
    """The location of a mipmap's data in the file."""
    offset: int
    length: int

    @property
    def end(self) -> int:
        """The offset just past the end of the data."""
        return self.offset + self.length

    def slice(self, data: Buffer) -> memoryview:
        """Return a read-only view of this range in the buffer, without copying."""
        return memoryview(data).cast('B').toreadonly()[self.offset:self.end]


def _resolve_slot(
    header: Header, level: int,
    source_len: int, payload_end: int,
) -> Optional[MipRange]:
    """Locate a single mipmap level, or return None if it is absent."""
    if not header.layout.mip_table:
        # BLP0 has one image, taking up the remainder of the file.
        if level != 0 or payload_end >= source_len:
            return None
        return MipRange(payload_end, source_len - payload_end)

    offset = header.offsets[level]
    length = header.lengths[level]
    if offset == 0 or length == 0:
        return None
    if offset + length > source_len:
        raise MipRangeOutOfBounds(level, offset, length, source_len)
    return MipRange(offset, length)


def resolve_mipmaps(
    header: Header,
    source_len: int,
    payload_end: Optional[int] = None,
) -> List[Optional[MipRange]]:
    """Locate the data for each of the 16 mipmap slots.

    Absent slots are ``None``. Slots may be in any order and may overlap, but ranges past the end
    of the buffer raise :py:class:`~blptools.errors.MipRangeOutOfBounds`.

    :param header: The parsed header.
    :param source_len: The size of the entire file.
    :param payload_end: For BLP0, where the palette or JPEG header ends. The image occupies
        the rest of the file. If not provided, the end of the header is used.
    """
    if payload_end is None:
        payload_end = header.size
    return [
        _resolve_slot(header, level, source_len, payload_end)
        for level in range(MAX_MIPMAPS)
    ]


def pixel_format(header: Header, level: int) -> PixelFormat:
    """Determine the layout of Direct pixel data for this header.

    :raises UnsupportedEncoding: If the combination of settings is not known.
    """
    if header.version is Version.BLP2:
        try:
            encoding = Encoding(header.encoding)
        except ValueError:
            raise UnsupportedEncoding(level, f'unknown encoding {header.encoding}') from None
    else:
        encoding = Encoding.PALETTE

    if encoding is Encoding.PALETTE:
        try:
            return _PALETTE_FORMATS[header.alpha_depth]
        except KeyError:
            raise UnsupportedEncoding(level, f'invalid alpha depth {header.alpha_depth}') from None
    elif encoding is Encoding.DXT:
        try:
            alpha_type = AlphaType(header.alpha_type)
        except ValueError:
            raise UnsupportedEncoding(level, f'unknown alpha type {header.alpha_type}') from None
        if alpha_type is AlphaType.DXT1:
            return PixelFormat.DXT1_ONEBITALPHA if header.alpha_depth else PixelFormat.DXT1
        elif alpha_type is AlphaType.DXT3:
            return PixelFormat.DXT3
        elif alpha_type is AlphaType.DXT5:
            return PixelFormat.DXT5
        elif alpha_type is AlphaType.BGRA:
            raise UnsupportedEncoding(level, 'BGRA alpha type with DXT compression')
        else:
            assert_never(alpha_type)
    elif encoding is Encoding.BGRA:
        return PixelFormat.BGRA8888
    else:
        assert_never(encoding)


def _decode_jpeg(
    raw: memoryview,
    prologue: JpegPrologue,
    level: int,
    width: int, height: int,
    jpeg: JpegCodec,
) -> 'array[int]':
    """Decode a JPEG mipmap. The stored data is BGR, and alpha is always opaque."""
    stream = prologue.header + raw.tobytes()
    try:
        image = jpeg.decode(stream)
    except JpegError as exc:
        raise UnsupportedEncoding(level, str(exc)) from exc
    if image.width != width or image.height != height:
        raise DimensionMismatch(level, width * height, image.width * image.height)

    pixels = _BLANK_PIXEL * (width * height)
    view_pix = memoryview(pixels)
    view_pix[0::4] = image.rgb[2::3]
    view_pix[1::4] = image.rgb[1::3]
    view_pix[2::4] = image.rgb[0::3]
    return pixels


def decode_level(
    raw: Buffer,
    payload: VariantPayload,
    header: Header,
    level: int,
    jpeg: Optional[JpegCodec] = None,
) -> 'array[int]':
    """Decode the raw data for a mipmap level into RGBA8 pixels.

    :param raw: The data for this level, as located by :py:func:`resolve_mipmaps`.
    :param payload: The JPEG header or palette.
    :param header: The file header, which determines the pixel format.
    :param level: The mipmap level, which determines the size.
    :param jpeg: The codec to use for JPEG data. If not set, Pillow is used.
    :raises MipError: If the data is invalid.
    """
    width, height = mip_dimensions(header.width, header.height, level)
    view = memoryview(raw).cast('B')
    texture_type = header.texture_type
    if texture_type is TextureType.JPEG:
        if not isinstance(payload, JpegPrologue):
            raise TypeError(f'JPEG textures require a JPEG header, not {payload!r}')
        return _decode_jpeg(view, payload, level, width, height, jpeg or PillowJpegCodec())
    elif texture_type is TextureType.DIRECT:
        if not isinstance(payload, DirectPrologue):
            raise TypeError(f'Direct textures require a palette, not {payload!r}')
        fmt = pixel_format(header, level)
        expected = fmt.frame_size(width, height)
        if view.nbytes != expected:
            raise DimensionMismatch(level, expected, view.nbytes)
        pixels = _BLANK_PIXEL * (width * height)
        _format_funcs.load(fmt, pixels, view, width, height, payload.to_bytes())
        return pixels
    else:
        assert_never(texture_type)


@attrs.frozen
class Pixel:
    """Data structure to hold colour data retrieved from a mipmap."""
    r: int
    g: int
    b: int
    a: int

    def __iter__(self) -> Iterator[int]:
        yield self.r
        yield self.g
        yield self.b
        yield self.a


class MipLevel:
    """A single mipmap of a BLP. This should not be constructed independently.

    If the pixel data is cleared, it will be regenerated from the larger mipmap when saved.
    """
    __slots__ = ['index', 'width', 'height', '_data']
    index: int
    width: int
    height: int
    _data: Optional['array[int]']  # Only generic in stubs!

    def __init__(self, index: int, width: int, height: int) -> None:
        """Private constructor, creates a blank image of this size."""
        self.index = index
        self.width = width
        self.height = height
        self._data = None

    def __repr__(self) -> str:
        return f'<MipLevel {self.index}: {self.width}x{self.height}>'

    @property
    def is_cleared(self) -> bool:
        """If true, this has no pixel data and will be regenerated."""
        return self._data is None

    def load(self) -> None:
        """Ensure pixel data is present, filling with black if cleared."""
        if self._data is None:
            self._data = _BLANK_PIXEL * (self.width * self.height)

    def clear(self) -> None:
        """This clears the contents of the mipmap.

        If the BLP is saved, this will be generated from the larger mipmaps.
        """
        self._data = None

    def fill(self, r: int = 0, g: int = 0, b: int = 0, a: int = 255) -> None:
        """Fill the mipmap with the specified colour."""
        colour = array('B', [r, g, b, a])
        self._data = colour * (self.width * self.height)

    def copy_from(self, source: Union['MipLevel', Buffer]) -> None:
        """Overwrite this mipmap with other data.

        The source can be another mipmap of the same size, or any buffer of RGBA8 pixels.
        """
        if isinstance(source, MipLevel):
            if self.width != source.width or self.height != source.height:
                raise ValueError("Tried copying from a mipmap of a different size!")
            source.load()
            assert source._data is not None
            self._data = source._data[:]
            return

        view = memoryview(source)
        # For efficiency, our functions assume the view is contiguous.
        # If it isn't, make a copy to force that.
        if not view.c_contiguous:
            view = memoryview(view.tobytes())
        view = view.cast('B')
        required_size = 4 * self.width * self.height
        if view.nbytes != required_size:
            raise ValueError(
                f"Expected {required_size} bytes "
                f"for {self.width}x{self.height} RGBA image, "
                f"got {view.nbytes} bytes!"
            )
        self._data = array('B', view)

    def rescale_from(self, larger: 'MipLevel', filter: FilterMode = FilterMode.BILINEAR) -> None:
        """Regenerate this image from the next mipmap.

        Each dimension must either be the same, or half of the larger image (rounding down).
        """
        larger.load()
        assert larger._data is not None
        if self._data is None:
            self._data = _BLANK_PIXEL * (self.width * self.height)
        _format_funcs.scale_down(
            filter,
            larger.width, larger.height,
            self.width, self.height,
            larger._data, self._data,
        )

    def __getitem__(self, item: Tuple[int, int]) -> Pixel:
        """Retrieve an individual pixel at (x, y)."""
        self.load()
        assert self._data is not None

        x, y = item
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(item)
        off = (y * self.width + x) * 4
        return Pixel(*self._data[off: off + 4])

    def __setitem__(
        self,
        item: Tuple[int, int],
        data: Union[Pixel, Tuple[int, int, int, int]],
    ) -> None:
        """Set an individual pixel at (x, y)."""
        self.load()
        assert self._data is not None

        x, y = item
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(item)
        off = (y * self.width + x) * 4
        [
            self._data[off],
            self._data[off + 1],
            self._data[off + 2],
            self._data[off + 3],
        ] = data

    def __buffer__(self, flags: int) -> memoryview:
        """Allow access to the internal buffer of pixels."""
        self.load()
        assert self._data is not None
        return memoryview(self._data).cast('B', (self.height, self.width, 4))

    @property
    def pixels(self) -> 'array[int]':
        """The RGBA8 pixel data, row by row."""
        self.load()
        assert self._data is not None
        return self._data

    def to_PIL(self) -> 'PIL_Image':
        """Convert the mipmap into a PIL image.

        Requires Pillow to be installed.
        """
        self.load()
        assert self._data is not None

        from PIL.Image import frombuffer
        return frombuffer(
            'RGBA',
            (self.width, self.height),
            self._data,
            'raw',
            'RGBA',
            0,
            1,
        ).copy()


def build_palette(levels: Iterable[MipLevel]) -> DirectPrologue:
    """Compute a palette suitable for the given mipmaps.

    If there are 256 colours or fewer, they are used exactly. Otherwise Pillow is used to
    quantise the first image.
    """
    mipmaps = list(levels)
    colours: List[Tuple[int, int, int]] = []
    finder = binformat.find_or_insert(colours, lambda col: col)
    for mip in mipmaps:
        data = mip.pixels
        for off in range(0, len(data), 4):
            finder((data[off], data[off + 1], data[off + 2]))
            if len(colours) > PALETTE_ENTRIES:
                break
        if len(colours) > PALETTE_ENTRIES:
            break
    else:
        return DirectPrologue.from_colours(colours)

    LOGGER.info('Image has more than {} colours, quantising.', PALETTE_ENTRIES)
    image = mipmaps[0].to_PIL().convert('RGB').quantize(PALETTE_ENTRIES)
    pal_data = image.getpalette() or []
    return DirectPrologue.from_colours([
        (pal_data[i], pal_data[i + 1], pal_data[i + 2])
        for i in range(0, min(len(pal_data), 3 * PALETTE_ENTRIES) - 2, 3)
    ])


def _common_prefix(streams: Sequence[bytes]) -> int:
    """Find the length of the prefix shared by all the byte strings."""
    shortest = min(len(stream) for stream in streams)
    for i in range(shortest):
        byte = streams[0][i]
        if any(stream[i] != byte for stream in streams):
            return i
    return shortest


class BLP:
    """Blizzard texture files, used in Warcraft III and World of Warcraft."""
    #: The header, as read from the file or computed from the constructor.
    #: The offsets and lengths are recomputed when saving.
    header: Header
    #: The palette or JPEG header read from the file, if any.
    #: This is used when saving if no other palette is specified.
    payload: Optional[VariantPayload]
    #: All 16 mipmap slots. Absent mipmaps are ``None``.
    levels: List[Optional[MipLevel]]
    #: When decoded in best-effort mode, the errors for each mipmap which failed.
    errors: Dict[int, MipError]

    def __init__(
        self,
        width: int,
        height: int,
        version: Version = Version.BLP2,
        texture_type: TextureType = TextureType.DIRECT,
        *,
        encoding: Encoding = Encoding.PALETTE,
        alpha_depth: int = 8,
        alpha_type: AlphaType = AlphaType.DXT1,
        mipmaps: bool = True,
    ) -> None:
        """Create a blank BLP file.

        If ``mipmaps`` is true, the full chain of mipmaps is allocated. BLP0 files store only one
        image, so they always start with a single level.
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive! ({width!r}x{height!r})")
        if alpha_depth not in _PALETTE_FORMATS:
            raise ValueError(f"Alpha depth must be 0, 1, 4 or 8, not {alpha_depth!r}!")
        if (
            version is not Version.BLP2
            and texture_type is TextureType.DIRECT
            and encoding is not Encoding.PALETTE
        ):
            raise ValueError(f"{version.name} only supports palette encoding, not {encoding.name}!")

        if mipmaps and HEADER_LAYOUTS[version].mip_table:
            mip_count = min(MAX_MIPMAPS, max(width, height).bit_length())
        else:
            mip_count = 1
        if version is Version.BLP2:
            extra = 0
        else:
            # 5 indicates no alpha, 4 has an alpha plane.
            extra = 4 if alpha_depth and texture_type is TextureType.DIRECT else 5

        self.header = Header(
            version, texture_type,
            width, height,
            alpha_depth=alpha_depth,
            encoding=encoding,
            alpha_type=alpha_type,
            has_mipmaps=int(mip_count > 1),
            extra=extra,
        )
        self.payload = None
        self.errors = {}
        self.levels = [
            MipLevel(level, *mip_dimensions(width, height, level))
            if level < mip_count else None
            for level in range(MAX_MIPMAPS)
        ]

    def __repr__(self) -> str:
        return (
            f'<BLP {self.version.name} {self.texture_type.name} '
            f'{self.width}x{self.height}, {len(self)} mipmaps>'
        )

    @property
    def version(self) -> Version:
        """The version of the file."""
        return self.header.version

    @property
    def texture_type(self) -> TextureType:
        """Whether this is a JPEG or Direct texture."""
        return self.header.texture_type

    @property
    def width(self) -> int:
        """The width of the largest mipmap."""
        return self.header.width

    @property
    def height(self) -> int:
        """The height of the largest mipmap."""
        return self.header.height

    @property
    def alpha_depth(self) -> int:
        """The number of bits of alpha per pixel."""
        return self.header.alpha_depth

    @property
    def pixel_format(self) -> PixelFormat:
        """For Direct textures, the layout used for pixel data."""
        if self.texture_type is not TextureType.DIRECT:
            raise ValueError('JPEG textures do not have a pixel format!')
        return pixel_format(self.header, 0)

    @classmethod
    def decode(
        cls: Type['BLP'],
        data: Buffer,
        *,
        strict: bool = True,
        jpeg: Optional[JpegCodec] = None,
    ) -> 'BLP':
        """Parse a BLP file from a buffer.

        :param data: The entire contents of the file.
        :param strict: If true, the first error in any mipmap is raised. Otherwise, the mipmap
            is treated as absent, and the error is stored in :py:attr:`errors`.
        :param jpeg: The codec to use for JPEG textures. If not set, Pillow is used.
        """
        view = memoryview(data).cast('B').toreadonly()
        header = Header.parse(view)
        payload = parse_variant(view, header.texture_type, header.size)
        payload_end = header.size + DirectPrologue.size
        if isinstance(payload, JpegPrologue):
            payload_end = header.size + payload.size
            if jpeg is None:
                jpeg = PillowJpegCodec()

        levels: List[Optional[MipLevel]] = [None] * MAX_MIPMAPS
        errors: Dict[int, MipError] = {}
        for level in range(MAX_MIPMAPS):
            with logger.context(f'mip {level}'):
                try:
                    mip_range = _resolve_slot(header, level, view.nbytes, payload_end)
                    if mip_range is None:
                        continue
                    pixels = decode_level(mip_range.slice(view), payload, header, level, jpeg)
                except MipError as exc:
                    if strict:
                        raise
                    LOGGER.warning('Skipping mipmap {}: {}', level, exc)
                    errors[level] = exc
                    continue
            mip = levels[level] = MipLevel(level, *mip_dimensions(header.width, header.height, level))
            mip._data = pixels

        blp = cls.__new__(cls)
        blp.header = header
        blp.payload = payload
        blp.levels = levels
        blp.errors = errors
        return blp

    @classmethod
    def read(
        cls: Type['BLP'],
        file: IO[bytes],
        *,
        strict: bool = True,
        jpeg: Optional[JpegCodec] = None,
    ) -> 'BLP':
        """Read a BLP file from a binary stream.

        Since mipmaps can be located anywhere, the whole file is read first.
        """
        return cls.decode(file.read(), strict=strict, jpeg=jpeg)

    @classmethod
    def from_PIL(
        cls: Type['BLP'],
        image: 'PIL_Image',
        version: Version = Version.BLP2,
        texture_type: TextureType = TextureType.DIRECT,
        **kwargs: object,
    ) -> 'BLP':
        """Create a BLP from a PIL image. The smaller mipmaps will be generated when saved.

        Additional keyword arguments are passed to the constructor.
        """
        if image.mode != 'RGBA':
            image = image.convert('RGBA')
        blp = cls(image.width, image.height, version, texture_type, **kwargs)  # type: ignore[arg-type]
        blp.get().copy_from(image.tobytes())
        return blp

    def __len__(self) -> int:
        """The number of mipmaps present."""
        return sum(1 for mip in self.levels if mip is not None)

    def __iter__(self) -> Iterator[MipLevel]:
        """Iterate over the mipmaps, stopping at the first absent one."""
        for mip in self.levels:
            if mip is None:
                return
            yield mip

    def get(self, mipmap: int = 0) -> MipLevel:
        """Get a specific mipmap.

        :raises IndexError: If the mipmap is absent.
        """
        mip = self.levels[mipmap]
        if mip is None:
            raise IndexError(f'Mipmap {mipmap} is not present!')
        return mip

    def level(self, index: int) -> Optional['array[int]']:
        """Return the RGBA8 pixels for a mipmap level, or ``None`` if absent."""
        mip = self.levels[index]
        if mip is None:
            return None
        return mip.pixels

    def load(self) -> None:
        """Ensure all mipmaps have pixel data, filling cleared ones with black."""
        for mip in self.levels:
            if mip is not None:
                mip.load()

    def clear_mipmaps(self, *, after: int = 0) -> None:
        """Erase the contents of all mipmaps smaller than the given level.

        When saved or compute_mipmaps() is called, these empty mipmaps will
        be recomputed from the largest mipmap.
        By default this clears all but the largest mipmap.
        """
        for mip in self.levels[after + 1:]:
            if mip is not None:
                mip.clear()

    def compute_mipmaps(self, filter: FilterMode = FilterMode.BILINEAR) -> None:
        """Regenerate all mipmaps that have previously been cleared."""
        larger: Optional[MipLevel] = None
        for mip in self.levels:
            if mip is None:
                larger = None
                continue
            if mip.is_cleared:
                if larger is not None:
                    mip.rescale_from(larger, filter)
                else:
                    # Force to blank if cleared, we can't load it from anything.
                    mip.load()
            larger = mip

    def encode(
        self,
        *,
        jpeg: Optional[JpegCodec] = None,
        palette: Optional[DirectPrologue] = None,
    ) -> bytes:
        """Produce the binary form of the BLP file.

        See :py:meth:`save` for the parameters.
        """
        buf = BytesIO()
        self.save(buf, jpeg=jpeg, palette=palette)
        return buf.getvalue()

    def save(
        self,
        file: IO[bytes],
        *,
        jpeg: Optional[JpegCodec] = None,
        palette: Optional[DirectPrologue] = None,
    ) -> None:
        """Write out the BLP file to this stream.

        :param file: The stream to write to.
        :param jpeg: The codec to use for JPEG textures. If not set, Pillow is used.
        :param palette: For Direct textures, the palette to use. If not set, the palette
            originally read is used, or one is generated from the image.
        """
        self.compute_mipmaps()
        header = self.header
        mipmaps = [mip for mip in self.levels if mip is not None]
        if not mipmaps:
            raise ValueError('No mipmaps to save!')
        if not header.layout.mip_table:
            # There's only space for one image.
            if mipmaps[0].index != 0:
                raise ValueError(f'{header.version.name} files must have the first mipmap!')
            if len(mipmaps) > 1:
                LOGGER.warning(
                    '{} files can only store one image, discarding {} mipmaps.',
                    header.version.name, len(mipmaps) - 1,
                )
            mipmaps = mipmaps[:1]

        # The offsets depend on the final lengths, so all the data needs to be built first.
        prologue: VariantPayload
        data: List[bytes]
        texture_type = header.texture_type
        if texture_type is TextureType.JPEG:
            prologue, data = self._encode_jpeg(mipmaps, jpeg or PillowJpegCodec())
        elif texture_type is TextureType.DIRECT:
            prologue, data = self._encode_direct(mipmaps, palette)
        else:
            assert_never(texture_type)
        prologue_data = serialize_variant(prologue)

        offsets = [0] * MAX_MIPMAPS
        lengths = [0] * MAX_MIPMAPS
        if header.layout.mip_table:
            pos = header.size + len(prologue_data)
            for mip, mip_data in zip(mipmaps, data):
                offsets[mip.index] = pos
                lengths[mip.index] = len(mip_data)
                pos += len(mip_data)
        header = attrs.evolve(header, offsets=offsets, lengths=lengths)

        file.write(header.serialize())
        file.write(prologue_data)
        for mip_data in data:
            file.write(mip_data)

    def _encode_direct(
        self,
        mipmaps: List[MipLevel],
        palette: Optional[DirectPrologue],
    ) -> Tuple[DirectPrologue, List[bytes]]:
        """Compute the palette and pixel data for Direct textures."""
        fmt = pixel_format(self.header, 0)
        if palette is None:
            if isinstance(self.payload, DirectPrologue):
                palette = self.payload
            elif fmt.uses_palette:
                palette = build_palette(mipmaps)
            else:
                palette = BLANK_PALETTE
        palette_data = palette.to_bytes()

        data: List[bytes] = []
        for mip in mipmaps:
            buf = bytearray(fmt.frame_size(mip.width, mip.height))
            _format_funcs.save(fmt, mip.pixels, buf, mip.width, mip.height, palette_data)
            data.append(bytes(buf))
        return palette, data

    def _encode_jpeg(
        self,
        mipmaps: List[MipLevel],
        jpeg: JpegCodec,
    ) -> Tuple[JpegPrologue, List[bytes]]:
        """Encode each mipmap, then split off the common header.

        Each mipmap is stored as BGR, with the alpha discarded.
        """
        streams: List[bytes] = []
        for mip in mipmaps:
            rgb = bytearray(3 * mip.width * mip.height)
            view_rgb = memoryview(rgb)
            view_pix = memoryview(mip.pixels)
            view_rgb[0::3] = view_pix[2::4]
            view_rgb[1::3] = view_pix[1::4]
            view_rgb[2::3] = view_pix[0::4]
            try:
                streams.append(jpeg.encode(JpegImage(mip.width, mip.height, bytes(rgb))))
            except JpegError as exc:
                raise UnsupportedEncoding(mip.index, str(exc)) from exc

        # Every mipmap must keep at least one byte, zero lengths mean absent.
        shared = min(_common_prefix(streams), min(len(stream) for stream in streams) - 1)
        LOGGER.debug('Shared JPEG header is {} bytes', shared)
        return JpegPrologue(streams[0][:shared]), [stream[shared:] for stream in streams]
