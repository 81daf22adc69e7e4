"""The JPEG codec used for JPEG-type BLP textures.

BLP files do not contain anything special for JPEG data, so decoding is delegated to any object
implementing :py:class:`JpegCodec`. By default :py:class:`PillowJpegCodec` is used, which
requires the `Python Imaging Library`_.

.. _`Python Imaging Library`: https://pillow.readthedocs.io/en/stable/
"""
from typing import Protocol
from io import BytesIO

import attrs


__all__ = ['JpegError', 'JpegImage', 'JpegCodec', 'PillowJpegCodec']


class JpegError(Exception):
    """Raised by a codec if a JPEG stream could not be processed."""


@attrs.frozen
class JpegImage:
    """A decoded JPEG image, with three bytes per pixel."""
    width: int
    height: int
    rgb: bytes = attrs.field()

    @rgb.validator
    def _check_size(self, attribute: 'attrs.Attribute[bytes]', value: bytes) -> None:
        if len(value) != 3 * self.width * self.height:
            raise ValueError(
                f'Expected {3 * self.width * self.height} bytes for a '
                f'{self.width}x{self.height} image, got {len(value)} bytes!'
            )


class JpegCodec(Protocol):
    """The interface required for JPEG encoding and decoding."""
    def decode(self, data: bytes) -> JpegImage:
        """Decode a complete JPEG stream. This should raise :py:class:`JpegError` on failure."""
        ...

    def encode(self, image: JpegImage) -> bytes:
        """Encode the image into a complete JPEG stream."""
        ...


@attrs.frozen
class PillowJpegCodec:
    """Use Pillow to handle JPEG data."""
    quality: int = 75  #: The quality to use when encoding, from 1-95.

    def decode(self, data: bytes) -> JpegImage:
        """Decode a JPEG stream using Pillow."""
        from PIL import Image

        try:
            with Image.open(BytesIO(data), formats=['JPEG']) as img:
                img.load()
                if img.mode != 'RGB':
                    img = img.convert('RGB')
                return JpegImage(img.width, img.height, img.tobytes())
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            # Bomb errors are raised for frame headers declaring absurd sizes.
            raise JpegError(str(exc)) from exc

    def encode(self, image: JpegImage) -> bytes:
        """Encode pixels using Pillow."""
        from PIL import Image

        img = Image.frombytes('RGB', (image.width, image.height), image.rgb)
        buf = BytesIO()
        try:
            img.save(buf, 'JPEG', quality=self.quality)
        except (OSError, ValueError) as exc:
            raise JpegError(str(exc)) from exc
        return buf.getvalue()
