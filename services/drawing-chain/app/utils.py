from PIL import Image, UnidentifiedImageError
import base64
import binascii
import io
import numpy as np
from typing import Union

from .chain.errors import InputError


def as_rgba(image: Union[Image.Image, np.ndarray]) -> np.ndarray:
    """
    Normalizes a canvas into an HxWx4 uint8 RGBA array.
    RGB inputs are treated as fully opaque. Anything else is rejected, never resized.
    """
    if isinstance(image, Image.Image):
        image = np.array(image.convert("RGBA"))
    arr = np.asarray(image)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise InputError(f"raster must be HxWx4 (RGBA) or HxWx3 (RGB), got shape {arr.shape}")
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise InputError("raster is empty")
    arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr, alpha], axis=2)
    return arr


def decode_image(data: Union[str, bytes]) -> np.ndarray:
    """
    Decodes a canvas export (base64 string, data URI or raw image bytes) into RGBA.
    """
    if isinstance(data, str):
        if data.startswith("data:"):
            # data:image/png;base64,....
            data = data.split(",", 1)[-1]
        try:
            data = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InputError(f"image is not valid base64: {exc}") from exc
    try:
        with Image.open(io.BytesIO(data)) as im:
            return as_rgba(im)
    except (UnidentifiedImageError, OSError) as exc:
        raise InputError(f"could not decode image: {exc}") from exc
