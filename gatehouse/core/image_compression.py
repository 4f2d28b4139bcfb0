"""Image resize + re-encode under a byte budget.

Used by the avatar pipeline. The image is cropped to fill a fixed square
(cover fit) and re-encoded; quality is lowered in fixed steps until the
output fits the budget or the floor quality is reached. The floor-quality
result is returned even if it is still over budget.
"""

import io
from dataclasses import dataclass
from typing import Literal

from PIL import Image, ImageOps, UnidentifiedImageError

from gatehouse.core.errors import ValidationError

ImageFormat = Literal["webp", "jpeg", "png"]

_PIL_FORMATS: dict[str, str] = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG"}
_CONTENT_TYPES: dict[str, str] = {
    "webp": "image/webp",
    "jpeg": "image/jpeg",
    "png": "image/png",
}


@dataclass(frozen=True)
class CompressionOptions:
    """Output geometry and quality ladder.

    Attributes:
        width: Output width in pixels.
        height: Output height in pixels.
        format: Output encoding.
        initial_quality: First quality tried.
        min_quality: Lowest quality tried (floor).
        step: Quality decrement between attempts.
    """

    width: int = 512
    height: int = 512
    format: ImageFormat = "jpeg"
    initial_quality: int = 80
    min_quality: int = 40
    step: int = 10

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self.format]


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ValidationError(
            message="Uploaded file is not a valid image",
            details=[{"field": "image", "error": "INVALID_IMAGE"}],
        ) from exc
    # Respect camera orientation before cropping
    return ImageOps.exif_transpose(image)


def _prepare(image: Image.Image, options: CompressionOptions) -> Image.Image:
    if options.format == "jpeg":
        image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    return ImageOps.fit(
        image,
        (options.width, options.height),
        method=Image.Resampling.LANCZOS,
    )


def _encode(image: Image.Image, options: CompressionOptions, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=_PIL_FORMATS[options.format], quality=quality)
    return buffer.getvalue()


def compress_image(
    data: bytes,
    target_bytes: int,
    options: CompressionOptions | None = None,
) -> bytes:
    """Resize and re-encode an image, stepping quality down to fit a budget.

    Args:
        data: Raw image bytes (any format Pillow can decode).
        target_bytes: Byte budget for the output.
        options: Geometry/format/quality ladder; defaults to 512x512 JPEG,
            quality 80 down to 40 in steps of 10.

    Returns:
        Encoded image bytes. At most ``target_bytes`` unless the floor
        quality was reached.

    Raises:
        ValidationError: If ``data`` cannot be decoded as an image.
    """
    options = options or CompressionOptions()
    image = _prepare(_open(data), options)

    quality = options.initial_quality
    output = _encode(image, options, quality)
    while len(output) > target_bytes and quality > options.min_quality:
        quality = max(quality - options.step, options.min_quality)
        output = _encode(image, options, quality)
    return output
