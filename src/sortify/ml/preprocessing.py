"""Image preprocessing pipeline.

Decodes uploaded bytes, applies EXIF orientation, and converts any image
source into the fixed 224x224x3 float tensor both models expect.

The resize is a plain stretch: the aspect ratio of the source is NOT
preserved, so non-square inputs are distorted. This is lossy and matches how
the models were trained.
"""

from __future__ import annotations

import base64
import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from sortify.errors import DecodeFailure, InvalidInput

if TYPE_CHECKING:
    from numpy.typing import NDArray

    ImageSource = Image.Image | NDArray[np.uint8]

TARGET_SIZE: int = 224
CHANNELS: int = 3
SNAPSHOT_QUALITY: int = 90


def decode_image(image_bytes: bytes, max_pixels: int) -> Image.Image:
    """Decode raw image bytes into an RGB Pillow image.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Upper bound on width * height.

    Returns:
        Fully loaded RGB image with EXIF orientation applied.

    Raises:
        DecodeFailure: If the image cannot be decoded or exceeds the pixel limit.
    """
    if not image_bytes:
        raise DecodeFailure("Uploaded image is empty.")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise DecodeFailure(f"Image is too large ({width}x{height}).")
            img.load()
            oriented = ImageOps.exif_transpose(img)
            return oriented.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise DecodeFailure() from exc


def _to_rgb_image(source: ImageSource) -> Image.Image:
    if isinstance(source, Image.Image):
        return source if source.mode == "RGB" else source.convert("RGB")

    array = np.asarray(source)
    if array.dtype != np.uint8:
        raise InvalidInput(f"Expected uint8 pixel data, got {array.dtype}.")
    if array.ndim == 2:
        return Image.fromarray(array).convert("RGB")
    if array.ndim == 3 and array.shape[2] == 3:
        return Image.fromarray(array)
    if array.ndim == 3 and array.shape[2] == 4:
        # Alpha is dropped, not composited.
        return Image.fromarray(np.ascontiguousarray(array[:, :, :3]))
    raise InvalidInput(f"Unsupported image shape {array.shape}.")


def preprocess(source: ImageSource) -> NDArray[np.float32]:
    """Convert an image source into a normalized HxWxC float32 tensor.

    Output shape is (224, 224, 3), channel-last, values in [0, 1]. The
    returned array is read-only.
    """
    image = _to_rgb_image(source).resize((TARGET_SIZE, TARGET_SIZE), Image.Resampling.BILINEAR)
    tensor = np.asarray(image, dtype=np.float32) / np.float32(255.0)
    tensor.setflags(write=False)
    return tensor


def to_batch(tensor: NDArray[np.float32]) -> NDArray[np.float32]:
    """Add the leading batch axis expected by the runtime: (1, 224, 224, 3)."""
    if tensor.shape != (TARGET_SIZE, TARGET_SIZE, CHANNELS):
        raise InvalidInput(f"Expected tensor of shape (224, 224, 3), got {tensor.shape}.")
    return np.ascontiguousarray(tensor[np.newaxis, ...], dtype=np.float32)


def encode_snapshot(source: ImageSource) -> bytes:
    """Encode the analyzed image as JPEG for presentation and persistence."""
    buffer = io.BytesIO()
    _to_rgb_image(source).save(buffer, format="JPEG", quality=SNAPSHOT_QUALITY)
    return buffer.getvalue()


def snapshot_data_url(snapshot: bytes) -> str:
    """Wrap JPEG bytes in a ``data:`` URL."""
    return "data:image/jpeg;base64," + base64.b64encode(snapshot).decode("ascii")
