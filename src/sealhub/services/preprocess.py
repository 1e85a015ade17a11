"""Image preprocessing applied before encryption.

Images are decoded with Pillow, have their EXIF orientation applied to the
pixels and are rebuilt from raw pixel data so no metadata block (EXIF, GPS,
XMP, comments) survives. Optionally they are also downscaled and
recompressed to fit a size ceiling. Non-image files pass through untouched.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import logging
import mimetypes
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError

from sealhub.core.errors import PreprocessingFailedError
from sealhub.core.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

# MIME types Pillow can both decode and re-encode.
RASTER_FORMATS: dict[str, str] = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
    "image/gif": "GIF",
    "image/bmp": "BMP",
    "image/tiff": "TIFF",
}
LOSSY_FORMATS = frozenset({"JPEG", "WEBP"})
MIN_QUALITY = 40
QUALITY_STEP = 10

_DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)


@dataclass(frozen=True)
class LocalFile:
    """In-memory file as handed to the upload pipeline."""

    name: str
    data: bytes = field(repr=False)
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def sha256_hex(self) -> str:
        return hashlib.sha256(self.data).hexdigest()

    def with_data(self, data: bytes) -> LocalFile:
        return replace(self, data=data)

    @classmethod
    def from_path(cls, path: str | Path, mime_type: str | None = None) -> LocalFile:
        source = Path(path)
        guessed, _ = mimetypes.guess_type(source.name)
        return cls(
            name=source.name,
            data=source.read_bytes(),
            mime_type=mime_type or guessed or DEFAULT_MIME_TYPE,
        )


def _rebuild(image: Image.Image) -> Image.Image:
    """Copy only pixels, palette and transparency into a fresh image."""
    clean = Image.frombytes(image.mode, image.size, image.tobytes())
    if image.mode == "P":
        palette = image.getpalette()
        if palette is not None:
            clean.putpalette(palette)
    if "transparency" in image.info:
        clean.info["transparency"] = image.info["transparency"]
    return clean


def _save_kwargs(image: Image.Image, fmt: str, quality: int) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if fmt in LOSSY_FORMATS:
        kwargs["quality"] = quality
    if fmt in {"JPEG", "PNG"}:
        kwargs["optimize"] = True
    if "transparency" in image.info and fmt in {"PNG", "GIF"}:
        kwargs["transparency"] = image.info["transparency"]
    return kwargs


class FilePreprocessor:
    """Strips image metadata and optionally recompresses images."""

    def __init__(
        self,
        quality: int | None = None,
        max_dimension: int | None = None,
        max_size_bytes: int | None = None,
    ) -> None:
        self.quality = quality or settings.image_quality
        self.max_dimension = max_dimension or settings.image_max_dimension
        self.max_size_bytes = max_size_bytes or settings.image_max_size_bytes

    @staticmethod
    def _format_for(file: LocalFile) -> str | None:
        return RASTER_FORMATS.get(file.mime_type.lower())

    def _open(self, file: LocalFile) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(file.data))
            image.load()
            transposed = ImageOps.exif_transpose(image)
        except _DECODE_ERRORS as exc:
            raise PreprocessingFailedError(f"Could not decode image {file.name}: {exc}") from exc
        return transposed if transposed is not None else image

    @staticmethod
    def _encode(image: Image.Image, fmt: str, quality: int) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format=fmt, **_save_kwargs(image, fmt, quality))
        return buffer.getvalue()

    def strip_exif(self, file: LocalFile) -> LocalFile:
        """Return ``file`` re-encoded without any metadata.

        Raises:
            PreprocessingFailedError: If the image cannot be decoded or encoded.
        """
        fmt = self._format_for(file)
        if fmt is None:
            return file
        image = _rebuild(self._open(file))
        try:
            data = self._encode(image, fmt, self.quality)
        except _DECODE_ERRORS as exc:
            raise PreprocessingFailedError(f"Could not re-encode image {file.name}: {exc}") from exc
        logger.debug("Stripped metadata from %s (%d -> %d bytes)", file.name, file.size, len(data))
        return file.with_data(data)

    def reencode_image(
        self,
        file: LocalFile,
        max_size_bytes: int | None = None,
        max_dimension: int | None = None,
    ) -> LocalFile:
        """Downscale and recompress until the image fits ``max_size_bytes``.

        Lossy formats step their quality down to a floor; lossless formats
        are only downscaled. The result is best effort and may still exceed
        the ceiling. Metadata is stripped as a side effect.
        """
        fmt = self._format_for(file)
        if fmt is None:
            return file
        limit = max_size_bytes or self.max_size_bytes
        dimension = max_dimension or self.max_dimension

        image = _rebuild(self._open(file))
        if max(image.size) > dimension:
            image.thumbnail((dimension, dimension), Image.Resampling.LANCZOS)

        quality = self.quality
        try:
            data = self._encode(image, fmt, quality)
            while len(data) > limit and fmt in LOSSY_FORMATS and quality - QUALITY_STEP >= MIN_QUALITY:
                quality -= QUALITY_STEP
                data = self._encode(image, fmt, quality)
        except _DECODE_ERRORS as exc:
            raise PreprocessingFailedError(f"Could not re-encode image {file.name}: {exc}") from exc

        if len(data) > limit:
            logger.info("Recompressed %s is still %d bytes (limit %d)", file.name, len(data), limit)
        return file.with_data(data)

    def _prepare_sync(self, file: LocalFile, strip_exif: bool, reencode: bool) -> LocalFile:
        if reencode:
            try:
                return self.reencode_image(file)
            except PreprocessingFailedError:
                logger.warning("Recompression of %s failed; stripping metadata only", file.name)
                return self.strip_exif(file)
        if strip_exif:
            return self.strip_exif(file)
        return file

    async def prepare(
        self,
        file: LocalFile,
        strip_exif: bool | None = None,
        reencode: bool | None = None,
    ) -> LocalFile:
        """Apply the configured image preprocessing; non-images pass through."""
        strip = settings.strip_exif if strip_exif is None else strip_exif
        recompress = settings.reencode_images if reencode is None else reencode
        if not file.is_image or not (strip or recompress):
            return file
        return await asyncio.to_thread(self._prepare_sync, file, strip, recompress)
