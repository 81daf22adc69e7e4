"""Helpers for building BLP files by hand."""
from typing import Dict, List, Sequence, Tuple
import struct

from blptools.jpeg import JpegError, JpegImage


__all__ = [
    'blp0_header', 'blp1_header', 'blp2_header', 'palette_bytes', 'mip_table',
    'RecordingJpeg', 'BrokenJpeg', 'MemoryJpeg',
]


def mip_table(values: Sequence[int]) -> List[int]:
    """Pad the values out to 16 entries."""
    return list(values) + [0] * (16 - len(values))


def blp0_header(
    texture_type: int = 1, alpha_bits: int = 0,
    width: int = 4, height: int = 4,
    extra: int = 5, has_mipmaps: int = 0,
) -> bytes:
    """Build the 28-byte BLP0 header."""
    return b'BLP0' + struct.pack('<6I', texture_type, alpha_bits, width, height, extra, has_mipmaps)


def blp1_header(
    texture_type: int = 1, alpha_bits: int = 0,
    width: int = 4, height: int = 4,
    extra: int = 5, has_mipmaps: int = 0,
    offsets: Sequence[int] = (), lengths: Sequence[int] = (),
) -> bytes:
    """Build the 156-byte BLP1 header."""
    return b'BLP1' + struct.pack(
        '<6I16I16I',
        texture_type, alpha_bits, width, height, extra, has_mipmaps,
        *mip_table(offsets), *mip_table(lengths),
    )


def blp2_header(
    texture_type: int = 1, encoding: int = 1,
    alpha_depth: int = 8, alpha_type: int = 0, has_mipmaps: int = 0,
    width: int = 4, height: int = 4,
    offsets: Sequence[int] = (), lengths: Sequence[int] = (),
) -> bytes:
    """Build the 148-byte BLP2 header."""
    return b'BLP2' + struct.pack(
        '<I4B2I16I16I',
        texture_type, encoding, alpha_depth, alpha_type, has_mipmaps, width, height,
        *mip_table(offsets), *mip_table(lengths),
    )


def palette_bytes(*colours: Tuple[int, int, int, int]) -> bytes:
    """Build a palette from RGBA colours, padded with zeros."""
    data = b''.join(bytes([b, g, r, a]) for (r, g, b, a) in colours)
    return data + bytes(1024 - len(data))


class RecordingJpeg:
    """Records the streams passed to it, and produces a fixed image."""
    def __init__(self, width: int, height: int, rgb: bytes) -> None:
        self.image = JpegImage(width, height, rgb)
        self.streams: List[bytes] = []

    def decode(self, data: bytes) -> JpegImage:
        self.streams.append(data)
        return self.image

    def encode(self, image: JpegImage) -> bytes:
        raise NotImplementedError


class BrokenJpeg:
    """Fails for every stream."""
    def decode(self, data: bytes) -> JpegImage:
        raise JpegError('Not a JPEG')

    def encode(self, image: JpegImage) -> bytes:
        raise JpegError('Cannot encode')


class MemoryJpeg:
    """Produces streams which share a header, and remembers the image for each."""
    def __init__(self, header: bytes = b'HEADER') -> None:
        self.header = header
        self.images: Dict[bytes, JpegImage] = {}
        self.encoded: List[JpegImage] = []

    def encode(self, image: JpegImage) -> bytes:
        stream = self.header + struct.pack('<II', image.width, image.height) + image.rgb
        self.images[stream] = image
        self.encoded.append(image)
        return stream

    def decode(self, data: bytes) -> JpegImage:
        try:
            return self.images[data]
        except KeyError:
            raise JpegError('Unknown stream') from None
