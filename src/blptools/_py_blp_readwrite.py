"""Functions for reading/writing the pixel data of Direct BLP textures.

Everything is converted to and from a uniform 32-bit RGBA block.
"""
# Wherever possible, use memoryview slicing to copy channels all in one go. This is much faster
# than a loop.
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, NewType, Sequence, Tuple
from struct import Struct
import array

from typing_extensions import Buffer, TypeAlias


if TYPE_CHECKING:  # Avoid an import cycle.
    from blptools.blp import FilterMode, PixelFormat
else:
    PixelFormat = 'PixelFormat'
    FilterMode = 'FilterMode'

ROView = NewType('ROView', memoryview)
RWView = NewType('RWView', ROView)
Array: TypeAlias = 'array.array[int]'
Colour: TypeAlias = Tuple[int, int, int, int]
# Pixels, raw data, width, height, palette.
SaveFunc: TypeAlias = Callable[[Array, RWView, int, int, ROView], None]
LoadFunc: TypeAlias = Callable[[Array, ROView, int, int, ROView], None]
_SAVE: Dict[PixelFormat, SaveFunc] = {}
_LOAD: Dict[PixelFormat, LoadFunc] = {}

PALETTE_SIZE = 256 * 4
# Colour 0, colour 1, lookup table.
ST_COLOUR_BLOCK = Struct('<HHI')
TRANSPARENT: Colour = (0, 0, 0, 0)
BLACK: Colour = (0, 0, 0, 0xFF)


def upsample(bits: int, data: int) -> int:
    """Stretch bits worth of data to fill the byte.

    This is done by duplicating the MSB to fill the remaining space.
    """
    return data | (data >> bits)


def decomp565(value: int) -> Tuple[int, int, int]:
    """Decompress a 565-packed 16-bit integer into an RGB triplet."""
    # RRRRRGGG GGGBBBBB
    return (
        upsample(5, (value >> 8) & 0b11111000),
        upsample(6, (value >> 3) & 0b11111100),
        upsample(5, (value << 3) & 0b11111000),
    )


def compress565(r: int, g: int, b: int) -> int:
    """Compress an RGB triplet into a 565-packed 16-bit integer."""
    return (r & 0b11111000) << 8 | (g & 0b11111100) << 3 | b >> 3


def init(formats: Iterable[PixelFormat]) -> None:
    """Create a mapping from formats to functions."""
    glob = globals()
    for fmt in formats:
        try:
            _LOAD[fmt] = glob['load_' + fmt.name.casefold()]
        except KeyError:
            pass
        try:
            _SAVE[fmt] = glob['save_' + fmt.name.casefold()]
        except KeyError:
            pass


def _check_sizes(fmt: PixelFormat, pixels: Array, data: memoryview, width: int, height: int) -> None:
    """Verify the buffers are the correct size for this image."""
    if memoryview(pixels).nbytes != 4 * width * height:
        raise BufferError(
            f"Incorrect pixel array size. Expected {4 * width * height} bytes, "
            f"got {memoryview(pixels).nbytes} bytes."
        )
    expected_size = fmt.frame_size(width, height)
    if data.nbytes != expected_size:
        raise BufferError(
            f"Incorrect data block size. Expected {expected_size} bytes, "
            f"got {data.nbytes} bytes."
        )


def load(
    fmt: PixelFormat,
    pixels: Array,
    data: Buffer,
    width: int, height: int,
    palette: Buffer = b'',
) -> None:
    """Load pixels from data in the given format."""
    view_data = ROView(memoryview(data).cast('B'))
    _check_sizes(fmt, pixels, view_data, width, height)
    try:
        func = _LOAD[fmt]
    except KeyError:
        raise NotImplementedError(f"Loading {fmt.name} not implemented!") from None
    func(pixels, view_data, width, height, ROView(memoryview(palette).cast('B')))


def save(
    fmt: PixelFormat,
    pixels: Array,
    data: Buffer,
    width: int, height: int,
    palette: Buffer = b'',
) -> None:
    """Save pixels to data in the given format."""
    view_data = RWView(ROView(memoryview(data).cast('B')))
    if view_data.readonly:
        raise BufferError("Data buffer must be writable.")
    _check_sizes(fmt, pixels, view_data, width, height)
    try:
        func = _SAVE[fmt]
    except KeyError:
        raise NotImplementedError(f"Saving {fmt.name} not implemented!") from None
    func(pixels, view_data, width, height, ROView(memoryview(palette).cast('B')))


def scale_down(
    filt: FilterMode,
    src_width: int, src_height: int,
    width: int, height: int,
    src: Array, dest: Array,
) -> None:
    """Scale down the image to this smaller size.

    This is simplified for mipmap generation only:
    either dimension may be the same, or be halved (rounding down).
    Odd-sized sources reuse the last row/column for the missing neighbour.
    """
    if width == src_width:
        step_x = 1
    elif width == src_width // 2:
        step_x = 2
    else:
        raise ValueError(f"Cannot scale width {src_width} -> {width}")
    if height == src_height:
        step_y = 1
    elif height == src_height // 2:
        step_y = 2
    else:
        raise ValueError(f"Cannot scale height {src_height} -> {height}")

    if filt.value not in (0, 1, 2, 3, 4):
        raise ValueError(f"Unknown filter {filt}!")

    for y in range(height):
        y0 = step_y * y
        y1 = min(y0 + step_y - 1, src_height - 1)
        for x in range(width):
            x0 = step_x * x
            x1 = min(x0 + step_x - 1, src_width - 1)
            # Upper-left, upper-right, lower-left, lower-right.
            corners = [
                4 * (src_width * y0 + x0), 4 * (src_width * y0 + x1),
                4 * (src_width * y1 + x0), 4 * (src_width * y1 + x1),
            ]
            off = 4 * (width * y + x)
            if filt.value == 4:  # Bilinear
                for channel in (0, 1, 2, 3):
                    dest[off + channel] = sum([
                        src[corner + channel] for corner in corners
                    ]) // 4
            else:  # Nearest-neighbour, pick the corner.
                pos = corners[filt.value]
                dest[off:off + 4] = src[pos:pos + 4]


def _palette_indices(pixels: Array, count: int, palette: ROView) -> bytearray:
    """Find the closest palette entry for each pixel, ignoring alpha."""
    if palette.nbytes != PALETTE_SIZE:
        raise BufferError(f"Palette must be {PALETTE_SIZE} bytes, not {palette.nbytes}!")
    entries = [
        (palette[4 * i + 2], palette[4 * i + 1], palette[4 * i])
        for i in range(256)
    ]
    lookup: Dict[Tuple[int, int, int], int] = {}
    for i, colour in enumerate(entries):
        lookup.setdefault(colour, i)

    indices = bytearray(count)
    for offset in range(count):
        colour = (pixels[4 * offset], pixels[4 * offset + 1], pixels[4 * offset + 2])
        try:
            indices[offset] = lookup[colour]
        except KeyError:
            r, g, b = colour
            indices[offset] = lookup[colour] = min(
                range(256),
                key=lambda i: (
                    (entries[i][0] - r) ** 2 +
                    (entries[i][1] - g) ** 2 +
                    (entries[i][2] - b) ** 2
                ),
            )
    return indices


def _load_palette_colour(pixels: Array, data: ROView, count: int, palette: ROView) -> None:
    """Look up each index byte in the BGRA palette, filling in RGB."""
    if palette.nbytes != PALETTE_SIZE:
        raise BufferError(f"Palette must be {PALETTE_SIZE} bytes, not {palette.nbytes}!")
    view_pix = memoryview(pixels)
    indices = data[:count].tobytes()
    table = palette.tobytes()
    view_pix[0::4] = indices.translate(table[2::4])
    view_pix[1::4] = indices.translate(table[1::4])
    view_pix[2::4] = indices.translate(table[0::4])


def load_p8(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Palette indices only, fully opaque."""
    count = width * height
    _load_palette_colour(pixels, data, count, palette)
    memoryview(pixels)[3::4] = b'\xFF' * count


def save_p8(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Palette indices only, alpha is discarded."""
    count = width * height
    data[:count] = _palette_indices(pixels, count, palette)


def load_p8a1(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Palette indices, then a plane of 1-bit alpha. The lowest bit is the first pixel."""
    count = width * height
    _load_palette_colour(pixels, data, count, palette)
    alpha = bytearray(count)
    for offset in range(count):
        if data[count + (offset >> 3)] & (1 << (offset & 0b111)):
            alpha[offset] = 0xFF
    memoryview(pixels)[3::4] = alpha


def save_p8a1(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Palette indices, then a plane of 1-bit alpha. The lowest bit is the first pixel."""
    count = width * height
    data[:count] = _palette_indices(pixels, count, palette)
    alpha = bytearray(data.nbytes - count)
    for offset in range(count):
        if pixels[4 * offset + 3] >= 128:
            alpha[offset >> 3] |= 1 << (offset & 0b111)
    data[count:] = alpha


def load_p8a4(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Palette indices, then a plane of 4-bit alpha. The low nibble is the first pixel."""
    count = width * height
    _load_palette_colour(pixels, data, count, palette)
    alpha = bytearray(count)
    for offset in range(count):
        nibble = (data[count + (offset >> 1)] >> (4 * (offset & 1))) & 0b1111
        # Copy into both halves, so we evenly cover the whole range.
        alpha[offset] = nibble | nibble << 4
    memoryview(pixels)[3::4] = alpha


def save_p8a4(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Palette indices, then a plane of 4-bit alpha. The low nibble is the first pixel."""
    count = width * height
    data[:count] = _palette_indices(pixels, count, palette)
    alpha = bytearray(data.nbytes - count)
    for offset in range(count):
        nibble = (pixels[4 * offset + 3] * 15 + 127) // 255
        alpha[offset >> 1] |= nibble << (4 * (offset & 1))
    data[count:] = alpha


def load_p8a8(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Palette indices, then a plane of 8-bit alpha."""
    count = width * height
    _load_palette_colour(pixels, data, count, palette)
    memoryview(pixels)[3::4] = data[count:2 * count]


def save_p8a8(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Palette indices, then a plane of 8-bit alpha."""
    count = width * height
    data[:count] = _palette_indices(pixels, count, palette)
    data[count:] = memoryview(pixels)[3::4]


def load_bgra8888(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Uncompressed BGRA bytes, the palette is unused."""
    view_pix = memoryview(pixels)
    view_pix[0::4] = data[2::4]
    view_pix[1::4] = data[1::4]
    view_pix[2::4] = data[0::4]
    view_pix[3::4] = data[3::4]


def save_bgra8888(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Uncompressed BGRA bytes, the palette is unused."""
    view_pix = memoryview(pixels)
    data[2::4] = view_pix[0::4]
    data[1::4] = view_pix[1::4]
    data[0::4] = view_pix[2::4]
    data[3::4] = view_pix[3::4]


def block_counts(width: int, height: int) -> Tuple[int, int]:
    """Compute the number of 4x4 blocks needed to cover an image."""
    return (width + 3) // 4, (height + 3) // 4


def colour_table(colour0: int, colour1: int, four_colour: bool, black: Colour) -> List[Colour]:
    """Build the 4 colours a DXT colour block can select from.

    If colour 0 is not larger, the block uses 3 colours plus the black colour.
    DXT3/5 blocks always use 4 colours.
    """
    r0, g0, b0 = decomp565(colour0)
    r1, g1, b1 = decomp565(colour1)
    if four_colour or colour0 > colour1:
        return [
            (r0, g0, b0, 255),
            (r1, g1, b1, 255),
            ((2 * r0 + r1) // 3, (2 * g0 + g1) // 3, (2 * b0 + b1) // 3, 255),
            ((r0 + 2 * r1) // 3, (g0 + 2 * g1) // 3, (b0 + 2 * b1) // 3, 255),
        ]
    else:
        return [
            (r0, g0, b0, 255),
            (r1, g1, b1, 255),
            ((r0 + r1) // 2, (g0 + g1) // 2, (b0 + b1) // 2, 255),
            black,
        ]


def alpha_table(alpha0: int, alpha1: int) -> List[int]:
    """Build the 8 alpha values a DXT5 alpha block can select from."""
    if alpha0 > alpha1:
        return [
            alpha0,
            alpha1,
            (6 * alpha0 + 1 * alpha1) // 7,
            (5 * alpha0 + 2 * alpha1) // 7,
            (4 * alpha0 + 3 * alpha1) // 7,
            (3 * alpha0 + 4 * alpha1) // 7,
            (2 * alpha0 + 5 * alpha1) // 7,
            (1 * alpha0 + 6 * alpha1) // 7,
        ]
    else:
        return [
            alpha0,
            alpha1,
            (4 * alpha0 + 1 * alpha1) // 5,
            (3 * alpha0 + 2 * alpha1) // 5,
            (2 * alpha0 + 3 * alpha1) // 5,
            (1 * alpha0 + 4 * alpha1) // 5,
            0,
            255
        ]


def _decode_colours(data: ROView, block_off: int, four_colour: bool, black: Colour) -> List[Colour]:
    """Decode the 16 pixels of a colour block."""
    colour0, colour1, lookup = ST_COLOUR_BLOCK.unpack_from(data, block_off)
    table = colour_table(colour0, colour1, four_colour, black)
    return [table[(lookup >> (2 * i)) & 0b11] for i in range(16)]


def _write_block(
    pixels: Array,
    width: int, height: int,
    block_x: int, block_y: int,
    colours: Sequence[Colour],
) -> None:
    """Write a decoded block into the image, clipping anything past the edges."""
    for i, colour in enumerate(colours):
        x = 4 * block_x + (i & 0b11)
        y = 4 * block_y + (i >> 2)
        if x < width and y < height:
            off = 4 * (width * y + x)
            (
                pixels[off],
                pixels[off + 1],
                pixels[off + 2],
                pixels[off + 3],
            ) = colour


def _read_block(
    pixels: Array,
    width: int, height: int,
    block_x: int, block_y: int,
) -> List[Colour]:
    """Read the pixels for a block, repeating the edge pixels for partial blocks."""
    block: List[Colour] = []
    for i in range(16):
        x = min(4 * block_x + (i & 0b11), width - 1)
        y = min(4 * block_y + (i >> 2), height - 1)
        off = 4 * (width * y + x)
        block.append((pixels[off], pixels[off + 1], pixels[off + 2], pixels[off + 3]))
    return block


def _load_dxt1_impl(pixels: Array, data: ROView, width: int, height: int, black: Colour) -> None:
    """Does the actual decompression."""
    blocks_wide, blocks_high = block_counts(width, height)
    for block_y in range(blocks_high):
        for block_x in range(blocks_wide):
            block_off = 8 * (blocks_wide * block_y + block_x)
            _write_block(
                pixels, width, height, block_x, block_y,
                _decode_colours(data, block_off, False, black),
            )


def load_dxt1(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Load compressed DXT1 data."""
    _load_dxt1_impl(pixels, data, width, height, BLACK)


def load_dxt1_onebitalpha(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Load compressed DXT1 data, with an additional 1 bit of alpha squeezed in."""
    _load_dxt1_impl(pixels, data, width, height, TRANSPARENT)


def load_dxt3(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Load compressed DXT3 data, which has explicit 4-bit alpha."""
    blocks_wide, blocks_high = block_counts(width, height)
    for block_y in range(blocks_high):
        for block_x in range(blocks_wide):
            block_off = 16 * (blocks_wide * block_y + block_x)
            colours = _decode_colours(data, block_off + 8, True, BLACK)
            alpha = int.from_bytes(data[block_off:block_off + 8], 'little')
            for i in range(16):
                nibble = (alpha >> (4 * i)) & 0b1111
                colours[i] = colours[i][:3] + (nibble | nibble << 4, )
            _write_block(pixels, width, height, block_x, block_y, colours)


def load_dxt5(pixels: Array, data: ROView, width: int, height: int, palette: ROView) -> None:
    """Load compressed DXT5 data, which has interpolated alpha."""
    blocks_wide, blocks_high = block_counts(width, height)
    for block_y in range(blocks_high):
        for block_x in range(blocks_wide):
            block_off = 16 * (blocks_wide * block_y + block_x)
            colours = _decode_colours(data, block_off + 8, True, BLACK)
            table = alpha_table(data[block_off], data[block_off + 1])
            # The alpha data is a 48-bit integer, where each 3 bits maps to an alpha value.
            lookup = int.from_bytes(data[block_off + 2:block_off + 8], 'little')
            for i in range(16):
                colours[i] = colours[i][:3] + (table[(lookup >> (3 * i)) & 0b111], )
            _write_block(pixels, width, height, block_x, block_y, colours)


def _colour_distance(a: Colour, b: Colour) -> int:
    """Squared distance between the RGB parts of two colours."""
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2


def _compress_colours(block: List[Colour], transparency: bool, four_colour: bool) -> bytes:
    """Compress a block of pixels into a DXT colour block.

    The endpoints are the darkest and brightest colours. If transparency is enabled and the
    block has transparent pixels, 3-colour mode is used.
    """
    opaque = [
        colour for colour in block
        if not transparency or colour[3] >= 128
    ]
    if not opaque:
        # Everything is index 3, the transparent colour.
        return ST_COLOUR_BLOCK.pack(0, 0, 0xFFFFFFFF)

    darkest = min(opaque, key=lambda col: 2 * col[0] + 4 * col[1] + col[2])
    brightest = max(opaque, key=lambda col: 2 * col[0] + 4 * col[1] + col[2])
    high = compress565(*brightest[:3])
    low = compress565(*darkest[:3])

    if len(opaque) != len(block):
        # Colour 0 <= colour 1 means 3 colours plus transparency.
        colour0, colour1 = min(high, low), max(high, low)
    else:
        colour0, colour1 = max(high, low), min(high, low)

    table = colour_table(colour0, colour1, four_colour, TRANSPARENT)
    if four_colour or colour0 > colour1:
        candidates = range(4)
    else:
        candidates = range(3)

    lookup = 0
    for i, colour in enumerate(block):
        if transparency and colour[3] < 128:
            index = 3
        else:
            index = min(candidates, key=lambda ind: _colour_distance(colour, table[ind]))
        lookup |= index << (2 * i)
    return ST_COLOUR_BLOCK.pack(colour0, colour1, lookup)


def _save_dxt1_impl(pixels: Array, data: RWView, width: int, height: int, transparency: bool) -> None:
    blocks_wide, blocks_high = block_counts(width, height)
    for block_y in range(blocks_high):
        for block_x in range(blocks_wide):
            block_off = 8 * (blocks_wide * block_y + block_x)
            block = _read_block(pixels, width, height, block_x, block_y)
            data[block_off:block_off + 8] = _compress_colours(block, transparency, False)


def save_dxt1(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Save compressed DXT1 data, alpha is discarded."""
    _save_dxt1_impl(pixels, data, width, height, False)


def save_dxt1_onebitalpha(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Save compressed DXT1 data, pixels with alpha below 128 become transparent."""
    _save_dxt1_impl(pixels, data, width, height, True)


def save_dxt3(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Save compressed DXT3 data, with explicit 4-bit alpha."""
    blocks_wide, blocks_high = block_counts(width, height)
    for block_y in range(blocks_high):
        for block_x in range(blocks_wide):
            block_off = 16 * (blocks_wide * block_y + block_x)
            block = _read_block(pixels, width, height, block_x, block_y)
            alpha = 0
            for i, colour in enumerate(block):
                alpha |= ((colour[3] * 15 + 127) // 255) << (4 * i)
            data[block_off:block_off + 8] = alpha.to_bytes(8, 'little')
            data[block_off + 8:block_off + 16] = _compress_colours(block, False, True)


def save_dxt5(pixels: Array, data: RWView, width: int, height: int, palette: ROView) -> None:
    """Save compressed DXT5 data, with interpolated alpha."""
    blocks_wide, blocks_high = block_counts(width, height)
    for block_y in range(blocks_high):
        for block_x in range(blocks_wide):
            block_off = 16 * (blocks_wide * block_y + block_x)
            block = _read_block(pixels, width, height, block_x, block_y)
            alphas = [colour[3] for colour in block]
            alpha0 = max(alphas)
            alpha1 = min(alphas)
            table = alpha_table(alpha0, alpha1)
            lookup = 0
            for i, alpha in enumerate(alphas):
                index = min(range(8), key=lambda ind: abs(table[ind] - alpha))
                lookup |= index << (3 * i)
            data[block_off] = alpha0
            data[block_off + 1] = alpha1
            data[block_off + 2:block_off + 8] = lookup.to_bytes(6, 'little')
            data[block_off + 8:block_off + 16] = _compress_colours(block, False, True)
