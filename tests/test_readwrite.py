"""Test the pixel format functions directly."""
from array import array
import struct

import pytest

from blptools.blp import FilterMode, PixelFormat
# noinspection PyProtectedMember
from blptools import _py_blp_readwrite as format_funcs
from helpers import palette_bytes


def blank(width: int, height: int) -> 'array[int]':
    return array('B', [0, 0, 0, 0xFF]) * (width * height)


@pytest.mark.parametrize('fmt, width, height, size', [
    (PixelFormat.P8, 4, 4, 16),
    (PixelFormat.P8A1, 4, 4, 18),
    (PixelFormat.P8A1, 3, 3, 11),
    (PixelFormat.P8A4, 3, 3, 14),
    (PixelFormat.P8A8, 4, 4, 32),
    (PixelFormat.DXT1, 5, 5, 32),
    (PixelFormat.DXT1, 1, 1, 8),
    (PixelFormat.DXT1_ONEBITALPHA, 8, 4, 16),
    (PixelFormat.DXT3, 4, 4, 16),
    (PixelFormat.DXT5, 8, 4, 32),
    (PixelFormat.BGRA8888, 2, 2, 16),
])
def test_frame_size(fmt: PixelFormat, width: int, height: int, size: int) -> None:
    assert fmt.frame_size(width, height) == size


def test_all_formats_registered() -> None:
    for fmt in PixelFormat:
        assert fmt in format_funcs._LOAD, fmt
        assert fmt in format_funcs._SAVE, fmt


def test_buffer_sizes() -> None:
    """Incorrectly sized buffers are rejected."""
    with pytest.raises(BufferError):
        format_funcs.load(PixelFormat.BGRA8888, blank(2, 2), bytes(15), 2, 2)
    with pytest.raises(BufferError):
        format_funcs.load(PixelFormat.BGRA8888, blank(2, 1), bytes(16), 2, 2)
    with pytest.raises(BufferError):
        format_funcs.save(PixelFormat.BGRA8888, blank(2, 2), bytes(16), 2, 2)
    with pytest.raises(BufferError):
        format_funcs.load(PixelFormat.P8, blank(2, 2), bytes(4), 2, 2, bytes(16))


def test_565() -> None:
    assert format_funcs.decomp565(0xFFFF) == (255, 255, 255)
    assert format_funcs.decomp565(0x0000) == (0, 0, 0)
    assert format_funcs.decomp565(0xF800) == (255, 0, 0)
    assert format_funcs.decomp565(0x07E0) == (0, 255, 0)
    assert format_funcs.decomp565(0x001F) == (0, 0, 255)
    assert format_funcs.compress565(255, 0, 0) == 0xF800
    assert format_funcs.compress565(0, 255, 0) == 0x07E0
    assert format_funcs.compress565(0, 0, 255) == 0x001F


def test_colour_table() -> None:
    four = format_funcs.colour_table(0xF800, 0x001F, False, format_funcs.TRANSPARENT)
    assert four == [
        (255, 0, 0, 255),
        (0, 0, 255, 255),
        (170, 0, 85, 255),
        (85, 0, 170, 255),
    ]
    three = format_funcs.colour_table(0x001F, 0xF800, False, format_funcs.TRANSPARENT)
    assert three == [
        (0, 0, 255, 255),
        (255, 0, 0, 255),
        (127, 0, 127, 255),
        (0, 0, 0, 0),
    ]
    # DXT3/5 always use four colours.
    assert format_funcs.colour_table(0x001F, 0xF800, True, format_funcs.BLACK)[3] == (170, 0, 85, 255)


def test_alpha_table() -> None:
    assert format_funcs.alpha_table(255, 0) == [255, 0, 218, 182, 145, 109, 72, 36]
    assert format_funcs.alpha_table(0, 255) == [0, 255, 51, 102, 153, 204, 0, 255]


def test_load_dxt1() -> None:
    """Decode a single block with known contents."""
    # Pixel 0 uses colour 1, everything else colour 0.
    data = struct.pack('<HHI', 0xF800, 0x001F, 0b01)
    pixels = blank(4, 4)
    format_funcs.load(PixelFormat.DXT1, pixels, data, 4, 4)
    assert pixels[0:4] == array('B', [0, 0, 255, 255])
    assert pixels[4:] == array('B', [255, 0, 0, 255]) * 15


@pytest.mark.parametrize('fmt, colour', [
    (PixelFormat.DXT1, [0, 0, 0, 255]),
    (PixelFormat.DXT1_ONEBITALPHA, [0, 0, 0, 0]),
])
def test_load_dxt1_index_3(fmt: PixelFormat, colour: list) -> None:
    """In 3-colour mode, index 3 is black or transparent."""
    data = struct.pack('<HHI', 0x001F, 0xF800, 0xFFFFFFFF)
    pixels = blank(4, 4)
    format_funcs.load(fmt, pixels, data, 4, 4)
    assert pixels == array('B', colour) * 16


def test_load_dxt1_partial() -> None:
    """Blocks are clipped to the image size."""
    data = struct.pack('<HHI', 0xF800, 0, 0) + struct.pack('<HHI', 0x001F, 0, 0)
    pixels = blank(5, 2)
    format_funcs.load(PixelFormat.DXT1, pixels, data, 5, 2)
    row = array('B', [255, 0, 0, 255]) * 4 + array('B', [0, 0, 255, 255])
    assert pixels == row + row


def test_load_dxt5() -> None:
    # Alpha index 1 for pixel 0, index 7 for pixel 1, index 0 for the rest.
    alpha = bytes([255, 0]) + (0b111001).to_bytes(6, 'little')
    data = alpha + struct.pack('<HHI', 0x07E0, 0x07E0, 0)
    pixels = blank(4, 4)
    format_funcs.load(PixelFormat.DXT5, pixels, data, 4, 4)
    assert pixels[3::4] == array('B', [0, 36] + [255] * 14)
    assert pixels[0:3] == array('B', [0, 255, 0])


def test_load_dxt3() -> None:
    alpha = bytes([0x0F, 0x80, 0, 0, 0, 0, 0, 0xF0])
    data = alpha + struct.pack('<HHI', 0x001F, 0x001F, 0)
    pixels = blank(4, 4)
    format_funcs.load(PixelFormat.DXT3, pixels, data, 4, 4)
    assert pixels[3::4] == array('B', [0xFF, 0x00, 0x00, 0x88] + [0] * 11 + [0xFF])


def test_palette_nearest() -> None:
    """Colours not in the palette use the nearest entry."""
    palette = palette_bytes((255, 0, 0, 255), (0, 0, 255, 255), (0, 0, 0, 255))
    pixels = array('B', [
        250, 10, 0, 255,
        0, 5, 200, 255,
        255, 0, 0, 255,
        20, 20, 20, 255,
    ])
    data = bytearray(4)
    format_funcs.save(PixelFormat.P8, pixels, data, 2, 2, palette)
    assert data == bytearray([0, 1, 0, 2])


def test_p8a1_threshold() -> None:
    """Alpha of 128 or more is opaque."""
    palette = palette_bytes((255, 255, 255, 255))
    pixels = array('B', [
        255, 255, 255, 0,
        255, 255, 255, 127,
        255, 255, 255, 128,
        255, 255, 255, 255,
    ])
    data = bytearray(PixelFormat.P8A1.frame_size(4, 1))
    format_funcs.save(PixelFormat.P8A1, pixels, data, 4, 1, palette)
    assert data == bytearray([0, 0, 0, 0, 0b1100])


def test_bgra_channel_order() -> None:
    data = bytes([1, 2, 3, 4])
    pixels = blank(1, 1)
    format_funcs.load(PixelFormat.BGRA8888, pixels, data, 1, 1)
    assert pixels == array('B', [3, 2, 1, 4])
    out = bytearray(4)
    format_funcs.save(PixelFormat.BGRA8888, pixels, out, 1, 1)
    assert out == bytearray(data)


@pytest.mark.parametrize('filt, expected', [
    (FilterMode.UPPER_LEFT, [10, 0, 0, 255]),
    (FilterMode.UPPER_RIGHT, [0, 20, 0, 255]),
    (FilterMode.LOWER_LEFT, [0, 0, 30, 255]),
    (FilterMode.LOWER_RIGHT, [40, 40, 40, 255]),
    (FilterMode.BILINEAR, [12, 15, 17, 255]),
])
def test_scale_down(filt: FilterMode, expected: list) -> None:
    src = array('B', [
        10, 0, 0, 255, 0, 20, 0, 255,
        0, 0, 30, 255, 40, 40, 40, 255,
    ])
    dest = blank(1, 1)
    format_funcs.scale_down(filt, 2, 2, 1, 1, src, dest)
    assert dest == array('B', expected)


def test_scale_down_odd() -> None:
    """Odd sizes round down, and only halve in the dimension which shrinks."""
    src = array('B', range(4 * 3))
    dest = blank(1, 1)
    format_funcs.scale_down(FilterMode.UPPER_LEFT, 3, 1, 1, 1, src, dest)
    assert dest == array('B', [0, 1, 2, 3])
    with pytest.raises(ValueError):
        format_funcs.scale_down(FilterMode.BILINEAR, 3, 1, 2, 1, src, blank(2, 1))
