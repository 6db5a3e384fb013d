"""
Image preprocessing utilities for magazine page OCR.

Provides:
- EXIF orientation correction
- Grayscale conversion and intensity normalization
- Linear contrast stretch, median denoise and unsharp masking
- A fail-open bytes -> bytes wrapper used by the orchestrator
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Tuple, Optional, List
import numpy as np

from magrecon.config import ImageConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PreprocessingResult:
    """Result of page preprocessing."""
    image: np.ndarray
    original_shape: Tuple[int, int]
    applied_operations: List[str] = field(default_factory=list)
    buffer: Optional[bytes] = None


# ============================================================================
# Core Preprocessing Functions
# ============================================================================

def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert image to grayscale if it's color.

    Args:
        image: Input image (BGR, BGRA or grayscale)

    Returns:
        Grayscale image
    """
    import cv2

    if len(image.shape) == 2:
        return image
    elif len(image.shape) == 3:
        if image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        elif image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        elif image.shape[2] == 1:
            return image.squeeze()

    raise ValueError(f"Unexpected image shape: {image.shape}")


def apply_exif_orientation(image_bytes: bytes) -> Tuple[np.ndarray, bool]:
    """
    Decode bytes with Pillow and apply the EXIF orientation tag.

    Phone photos of magazine pages are usually stored sideways with an
    orientation tag; OpenCV's decoder does not always honour it.

    Returns:
        (BGR image, whether a rotation was applied)
    """
    from PIL import Image, ImageOps

    with Image.open(io.BytesIO(image_bytes)) as pil_img:
        orientation = pil_img.getexif().get(0x0112, 1)
        transposed = ImageOps.exif_transpose(pil_img)
        rgb = np.array(transposed.convert("RGB"))

    return rgb[:, :, ::-1].copy(), orientation not in (None, 1)


def normalize_intensity(image: np.ndarray) -> np.ndarray:
    """Stretch intensities to the full 0-255 range."""
    import cv2

    return cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX)


def adjust_contrast(
    image: np.ndarray,
    gain: float = 1.15,
    bias: float = -10.0
) -> np.ndarray:
    """
    Apply a linear contrast adjustment: out = gain * in + bias.

    Values are clipped to the uint8 range.
    """
    adjusted = image.astype(np.float32) * gain + bias
    return np.clip(adjusted, 0, 255).astype(np.uint8)


def median_denoise(image: np.ndarray, kernel_size: int = 3) -> np.ndarray:
    """Remove salt-and-pepper scan noise with a median filter."""
    import cv2

    if kernel_size % 2 == 0:
        kernel_size += 1
    return cv2.medianBlur(image, kernel_size)


def sharpen(
    image: np.ndarray,
    sigma: float = 1.2,
    amount: float = 0.8
) -> np.ndarray:
    """
    Unsharp mask: image + amount * (image - gaussian_blur(image, sigma)).

    Args:
        image: Input image
        sigma: Gaussian sigma of the blur
        amount: Strength of the sharpening

    Returns:
        Sharpened image
    """
    import cv2

    blurred = cv2.GaussianBlur(image, (0, 0), sigma)
    sharpened = cv2.addWeighted(image, 1.0 + amount, blurred, -amount, 0)

    logger.debug(f"Applied unsharp mask (sigma={sigma}, amount={amount})")
    return sharpened


# ============================================================================
# Main Preprocessing Pipeline
# ============================================================================

def preprocess_image(
    image: np.ndarray,
    config: Optional[ImageConfig] = None,
    rotated: bool = False
) -> PreprocessingResult:
    """
    Apply the page enhancement pipeline to a decoded image.

    Steps: grayscale -> normalize -> contrast -> median -> sharpen.
    Each enabled step is recorded in applied_operations.

    Args:
        image: Input image (BGR or grayscale)
        config: Image configuration (defaults used if None)
        rotated: Whether EXIF rotation was already applied upstream

    Returns:
        PreprocessingResult with processed image and applied operations
    """
    config = config or ImageConfig()
    original_shape = image.shape[:2]
    processed = image.copy()
    operations = []

    if rotated:
        operations.append("rotate")

    if config.grayscale:
        processed = to_grayscale(processed)
        operations.append("grayscale")

    if config.normalize:
        processed = normalize_intensity(processed)
        operations.append("normalize")

    if config.contrast_gain != 1.0 or config.contrast_bias != 0.0:
        processed = adjust_contrast(processed, config.contrast_gain, config.contrast_bias)
        operations.append("contrast")

    if config.median_kernel and config.median_kernel > 1:
        processed = median_denoise(processed, config.median_kernel)
        operations.append("median")

    if config.sharpen_sigma > 0 and config.sharpen_amount > 0:
        processed = sharpen(processed, config.sharpen_sigma, config.sharpen_amount)
        operations.append("sharpen")

    logger.info(f"Preprocessing complete: {' -> '.join(operations) or 'no changes'}")

    return PreprocessingResult(
        image=processed,
        original_shape=original_shape,
        applied_operations=operations
    )


def preprocess_bytes(
    image_bytes: bytes,
    config: Optional[ImageConfig] = None
) -> PreprocessingResult:
    """
    Enhance an encoded page image and re-encode it as PNG.

    Fail-open: any decoding or processing error returns the original
    bytes unchanged with an empty operations list.
    """
    from magrecon.utils.io import encode_image

    config = config or ImageConfig()

    try:
        if config.auto_rotate:
            image, rotated = apply_exif_orientation(image_bytes)
        else:
            from magrecon.utils.io import decode_image
            image, rotated = decode_image(image_bytes), False

        result = preprocess_image(image, config, rotated=rotated)
        result.buffer = encode_image(result.image)
        return result

    except Exception as e:
        logger.warning(f"Preprocessing failed, using original image: {e}")
        return PreprocessingResult(
            image=np.zeros((0, 0), dtype=np.uint8),
            original_shape=(0, 0),
            applied_operations=[],
            buffer=image_bytes
        )


def enhance_page(image_bytes: bytes) -> bytes:
    """Default preprocessing collaborator: bytes in, enhanced bytes out."""
    return preprocess_bytes(image_bytes).buffer

