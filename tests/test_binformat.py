from typing import List
import struct

import pytest

from blptools import binformat


@pytest.mark.parametrize('original, item, index', [
    ([1, 2, 3, 4], 3, 2),
    ([1, 2, 4, 38], 12, 4),
    ([3, 4, 5, 4], 4, 3),
])
def test_find_or_insert(original: List[int], item: int, index: int) -> None:
    """Test the find-or-insert helper function correctly inserts values."""
    array = original.copy()
    finder = binformat.find_or_insert(array, lambda x: -x)
    assert finder(item) == index
    assert finder(item) == index  # Doesn't repeat.
    assert array[index] == item  # And put it in that spot.
    # But the original is the same.
    assert array[:len(original)] == original


def test_find_or_insert_colours() -> None:
    """Test building a palette of colours."""
    colours = [(0, 0, 0)]
    finder = binformat.find_or_insert(colours, lambda col: col)
    assert finder((255, 0, 0)) == 1
    assert finder((0, 0, 0)) == 0
    assert finder((255, 0, 0)) == 1
    assert finder((0, 255, 0)) == 2
    assert colours == [(0, 0, 0), (255, 0, 0), (0, 255, 0)]


def test_struct_read() -> None:
    data = b'BLP2' + struct.pack('<IH', 0x12345678, 0xABCD)
    assert binformat.struct_read('>I', data) == (0x424C5032, )
    assert binformat.struct_read('<IH', data, 4) == (0x12345678, 0xABCD)
    assert binformat.struct_read(struct.Struct('<H'), memoryview(data), 8) == (0xABCD, )
    with pytest.raises(struct.error):
        binformat.struct_read('<I', data, 8)
    with pytest.raises(ValueError):
        binformat.struct_read('<I', data, -4)


def test_arrays() -> None:
    data = struct.pack('<3I', 1, 0xFF00FF00, 38)
    assert binformat.read_array('<I', data) == [1, 0xFF00FF00, 38]
    assert binformat.read_array(struct.Struct('<H'), data[:4]) == [1, 0]
    assert binformat.write_array('<I', [1, 0xFF00FF00, 38]) == data
    with pytest.raises(ValueError):
        binformat.read_array('<x', data)


def test_array_formats() -> None:
    """Only integer formats are accepted for arrays."""
    data = struct.pack('<2f', 1.0, 2.0)
    for fmt in ['<f', 'd', '<?', 'c']:
        with pytest.raises(ValueError):
            binformat.read_array(fmt, data)
    assert binformat.read_array('>b', b'\xff\x01') == [-1, 1]
    # The per-format size table is an implementation detail.
    assert binformat.__all__ == [
        'SIZE_INT', 'struct_read', 'read_array', 'write_array', 'find_or_insert',
    ]
    assert binformat.SIZE_INT == struct.calcsize('<i')
