"""
Photo preprocessing before upload.

Two stages, each independently fail-safe:

1. HEIC/HEIF (iPhone camera format) is converted to JPEG at quality 90.
2. The image is resized so its width is at most 1200px (aspect ratio kept,
   narrower images keep their size) and re-encoded in its own format at quality 80.

A stage that fails hands back its input unchanged, so the worst case of
`preprocess_image` is "no compression applied". It never raises.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath

import pillow_heif
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

MAX_WIDTH = 1200
HEIC_JPEG_QUALITY = 90
RECOMPRESS_QUALITY = 80

HEIC_CONTENT_TYPES = frozenset({"image/heic", "image/heif", "image/heic-sequence", "image/heif-sequence"})
HEIC_EXTENSIONS = frozenset({".heic", ".heif"})

# Pillow format name per MIME type, used when the decoder does not report one.
PIL_FORMAT_BY_CONTENT_TYPE = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
    "image/bmp": "BMP",
    "image/tiff": "TIFF",
}
# Formats whose encoder takes a lossy quality factor.
LOSSY_FORMATS = frozenset({"JPEG", "WEBP"})


@dataclass(frozen=True)
class ImageFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ProcessedImage:
    file: ImageFile
    original_size: int
    converted: bool = False

    @property
    def processed_size(self) -> int:
        return self.file.size

    @property
    def reduction_percent(self) -> float:
        if self.original_size <= 0:
            return 0.0
        return (self.original_size - self.processed_size) / self.original_size * 100

    def summary(self) -> str:
        """Human-readable before/after, e.g. "4.2MB → 0.6MB (85.7% smaller)"."""
        return (
            f"{format_megabytes(self.original_size)} → {format_megabytes(self.processed_size)} "
            f"({self.reduction_percent:.1f}% smaller)"
        )


def format_megabytes(size: int) -> str:
    return f"{size / 1024 / 1024:.1f}MB"


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.1f} MB"


def is_heic(file: ImageFile) -> bool:
    if (file.content_type or "").lower() in HEIC_CONTENT_TYPES:
        return True
    return PurePosixPath(file.filename or "").suffix.lower() in HEIC_EXTENSIONS


def scaled_dimensions(width: int, height: int, max_width: int = MAX_WIDTH) -> tuple[int, int]:
    """Cap the width at max_width and scale the height by the same factor."""
    if width <= max_width:
        return width, height
    new_height = max(1, round(height * max_width / width))
    return max_width, new_height


def _jpeg_filename(filename: str) -> str:
    path = PurePosixPath(filename or "photo")
    if path.suffix.lower() in HEIC_EXTENSIONS:
        return str(path.with_suffix(".jpg"))
    return f"{path.name}.jpg"


def convert_heic_to_jpeg(file: ImageFile, quality: int = HEIC_JPEG_QUALITY) -> ImageFile:
    try:
        with Image.open(io.BytesIO(file.data)) as img:
            rgb = ImageOps.exif_transpose(img).convert("RGB")
            buf = io.BytesIO()
            rgb.save(buf, format="JPEG", quality=quality)
    except Exception as e:
        logger.warning("HEIC conversion failed for %s, keeping original: %s", file.filename, e)
        return file
    converted = ImageFile(filename=_jpeg_filename(file.filename), content_type="image/jpeg", data=buf.getvalue())
    logger.info("HEIC converted to JPEG: %s -> %s", file.filename, converted.filename)
    return converted


def compress_image(file: ImageFile, max_width: int = MAX_WIDTH, quality: int = RECOMPRESS_QUALITY) -> ImageFile:
    try:
        with Image.open(io.BytesIO(file.data)) as img:
            fmt = img.format or PIL_FORMAT_BY_CONTENT_TYPE.get((file.content_type or "").lower())
            if not fmt:
                raise ValueError(f"unknown image format for content type {file.content_type!r}")

            # phone cameras store pixels sideways plus an Orientation tag; save() drops the tag
            upright = ImageOps.exif_transpose(img)
            width, height = upright.size
            new_size = scaled_dimensions(width, height, max_width)
            out = upright.resize(new_size, Image.Resampling.LANCZOS) if new_size != (width, height) else upright
            if fmt == "JPEG" and out.mode not in ("RGB", "L"):
                out = out.convert("RGB")

            save_kwargs: dict[str, object] = {"quality": quality} if fmt in LOSSY_FORMATS else {"optimize": True}
            buf = io.BytesIO()
            out.save(buf, format=fmt, **save_kwargs)
    except Exception as e:
        logger.warning("Image compression failed for %s, keeping input: %s", file.filename, e)
        return file
    return ImageFile(filename=file.filename, content_type=file.content_type, data=buf.getvalue())


def preprocess_image(file: ImageFile, *, max_width: int = MAX_WIDTH) -> ProcessedImage:
    original_size = file.size
    if original_size == 0:
        return ProcessedImage(file=file, original_size=0)

    current = file
    converted = False
    try:
        if is_heic(current):
            current = convert_heic_to_jpeg(current)
            converted = current is not file
        current = compress_image(current, max_width=max_width)
    except Exception as e:
        # Both stages already fall back on their own; this only guards the glue.
        logger.warning("Photo preprocessing aborted for %s: %s", file.filename, e)
        return ProcessedImage(file=file, original_size=original_size)

    result = ProcessedImage(file=current, original_size=original_size, converted=converted)
    logger.info("Photo processed: %s %s", file.filename, result.summary())
    return result
