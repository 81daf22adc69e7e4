"""
The binformat module :mod:`binformat` contains functionality for handling binary formats, \
esentially expanding on :external:mod:`struct`'s functionality.

"""
from typing import (
    Any, Callable, Collection, Dict, Final, Hashable, List, Mapping, Tuple, TypeVar,
    Union,
)
from struct import Struct
import functools

from typing_extensions import Buffer


__all__ = [
    'SIZE_INT',
    'struct_read', 'read_array', 'write_array',
    'find_or_insert',
]

#: Sizes of the integer formats :py:func:`read_array` accepts.
_ARRAY_SIZES: Final[Mapping[str, int]] = {
    fmt: Struct('<' + fmt).size
    for fmt in 'bBhHiIlLqQ'
}
SIZE_INT: Final = 4

T = TypeVar("T")
_cached_struct = functools.lru_cache()(Struct)


def struct_read(fmt: Union[Struct, str], data: Buffer, offset: int = 0) -> Tuple[Any, ...]:
    """Read a structure from the buffer at the given offset.

    Unlike :external:py:func:`struct.unpack_from`, negative offsets are not permitted.
    If the buffer is too short, :external:py:class:`struct.error` is raised.
    """
    if not isinstance(fmt, Struct):
        fmt = _cached_struct(fmt)
    if offset < 0:
        raise ValueError(f'Negative offset {offset}!')
    return fmt.unpack_from(data, offset)


def read_array(fmt: Union[str, Struct], data: Buffer) -> List[int]:
    """Read a buffer containing a stream of integers.

    The format string should be one of the integer format characters, optionally prefixed by an
     endianness indicator. As many integers as possible will then be read from the data.
    """

    if isinstance(fmt, Struct):
        # Since `struct.Struct` does not support writing arrays, we'll have to rebuild `fmt`.
        # Turn it back into its original format string so we can figure out what it held.
        fmt = fmt.format

    if len(fmt) == 2:
        endianness = fmt[0]
        fmt = fmt[1]
    else:
        endianness = ''
    try:
        item_size = _ARRAY_SIZES[fmt]
    except KeyError:
        raise ValueError(f'Unknown format character {fmt!r}!') from None
    count = memoryview(data).nbytes // item_size
    return list(Struct(endianness + fmt * count).unpack_from(data))


def write_array(fmt: Union[str, Struct], data: Collection[int]) -> bytes:
    """Build a packed array of integers.

    The format string should be one of the integer format characters, optionally prefixed by an
    endianness indicator. The integers in the data will then be packed into a bytes buffer and returned.
     """
    if isinstance(fmt, Struct):
        fmt = fmt.format

    if len(fmt) == 2:
        endianness = fmt[0]
        fmt = fmt[1]
    else:
        endianness = ''

    return Struct(endianness + fmt * len(data)).pack(*data)


def find_or_insert(item_list: List[T], key_func: Callable[[T], Hashable] = id) -> Callable[[T], int]:
    """Create a function for inserting items in a list if not found.

    This is used to build up a block of data, accessed by index.
    If the provided argument to the callable is already in the list,
    the index is returned. Otherwise, it is appended and the new index returned.
    The key function is used to match existing items.

    """
    by_index: Dict[Hashable, int] = {key_func(item): i for i, item in enumerate(item_list)}

    def finder(item: T) -> int:
        """Find or append the item."""
        key = key_func(item)
        try:
            return by_index[key]
        except KeyError:
            ind = by_index[key] = len(item_list)
            item_list.append(item)
            return ind
    return finder
