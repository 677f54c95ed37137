"""
Image processing helpers for decoding, enhancement, cropping and encoding of card photos.
"""

import base64
import binascii
import io
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from card_scanner import (
    CropRegion,
    DecodeFailure,
    DetectionCandidate,
    EdgeDetector,
    PerspectiveTransformer,
    RasterImage,
    RectifyStrategy,
    ScannerError,
)
from card_scanner.constants import (
    AUTO_ENHANCE_BRIGHTNESS,
    AUTO_ENHANCE_CONTRAST,
    DEFAULT_JPEG_QUALITY,
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_PERCENT,
    MIME_TYPES,
    UPLOAD_MAX_BYTES,
    UPLOAD_MAX_HEIGHT,
    UPLOAD_MAX_WIDTH,
    UPLOAD_QUALITY_STEPS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    mime_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode('utf-8')


@dataclass(frozen=True)
class ProcessedCard:
    record_id: str
    image: RasterImage
    encoded: EncodedImage
    candidate: DetectionCandidate
    fell_back: bool


def _strip_data_uri(b64: str) -> str:
    if b64.startswith('data:image/'):
        return b64.split(',', 1)[1]
    return b64


def base64_to_bytes(base64_string: str) -> bytes:
    """Decode a base64 string or data URI, tolerating missing padding."""
    b64 = _strip_data_uri(base64_string.strip())
    pad = len(b64) % 4
    if pad:
        b64 += '=' * (4 - pad)
    return base64.b64decode(b64)


def bytes_to_base64(image_bytes: bytes) -> str:
    """Convert image bytes to base64 string."""
    return base64.b64encode(image_bytes).decode('utf-8')


def fix_orientation_from_exif(image: Image.Image) -> Image.Image:
    """
    Fix image orientation based on EXIF data.

    Args:
        image: PIL Image

    Returns:
        Rotated image if an EXIF orientation tag is present
    """
    orientation = image.getexif().get(0x0112)

    if orientation == 2:
        return image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    elif orientation == 3:
        return image.rotate(180, expand=True)
    elif orientation == 4:
        return image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
    elif orientation == 5:
        return image.transpose(Image.Transpose.FLIP_LEFT_RIGHT).rotate(270, expand=True)
    elif orientation == 6:
        return image.rotate(270, expand=True)
    elif orientation == 7:
        return image.transpose(Image.Transpose.FLIP_LEFT_RIGHT).rotate(90, expand=True)
    elif orientation == 8:
        return image.rotate(90, expand=True)

    return image


def decode_image(data: Union[bytes, str], max_dimension: Optional[int] = None) -> RasterImage:
    """
    Decode a captured or uploaded photo into a RasterImage.

    Args:
        data: Raw image bytes, or a base64 string / data URI
        max_dimension: Optional cap on the longest edge

    Returns:
        RGBA RasterImage with EXIF orientation applied

    Raises:
        DecodeFailure: If the input is empty or not a decodable image
    """
    if isinstance(data, str):
        try:
            data = base64_to_bytes(data)
        except (binascii.Error, ValueError) as e:
            raise DecodeFailure(f"Invalid base64 image data: {e}") from e

    if not data:
        raise DecodeFailure("Image data is empty")

    try:
        pil_image = Image.open(io.BytesIO(data))
        pil_image.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeFailure(f"Failed to decode image: {e}") from e

    pil_image = fix_orientation_from_exif(pil_image)
    if pil_image.mode != 'RGBA':
        pil_image = pil_image.convert('RGBA')

    image = RasterImage(np.array(pil_image, dtype=np.uint8))
    if max_dimension:
        image = resize_to_fit(image, max_dimension, max_dimension)
    logger.debug("Decoded %d bytes into %s", len(data), image)
    return image


def resize_to_fit(image: RasterImage, max_width: int, max_height: int) -> RasterImage:
    """Downscale preserving aspect ratio so the image fits in max_width x max_height."""
    if image.width <= max_width and image.height <= max_height:
        return image

    scale = min(max_width / image.width, max_height / image.height)
    size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
    resized = cv2.resize(image.copy_pixels(), size, interpolation=cv2.INTER_AREA)
    return RasterImage(resized)


def encode_image(image: RasterImage, format: str = DEFAULT_OUTPUT_FORMAT,
                 quality: int = DEFAULT_JPEG_QUALITY) -> EncodedImage:
    """Encode a RasterImage to JPEG, PNG or WEBP bytes."""
    fmt = format.upper()
    if fmt not in MIME_TYPES:
        raise ValueError(f"Unsupported output format: {format}")

    if fmt == 'JPEG':
        ext = '.jpg'
        buffer_image = cv2.cvtColor(image.copy_pixels(), cv2.COLOR_RGBA2BGR)
        params = [cv2.IMWRITE_JPEG_QUALITY, int(quality)]
    elif fmt == 'WEBP':
        ext = '.webp'
        buffer_image = cv2.cvtColor(image.copy_pixels(), cv2.COLOR_RGBA2BGRA)
        params = [cv2.IMWRITE_WEBP_QUALITY, int(quality)]
    else:
        ext = '.png'
        buffer_image = cv2.cvtColor(image.copy_pixels(), cv2.COLOR_RGBA2BGRA)
        params = [cv2.IMWRITE_PNG_COMPRESSION, 3]

    ok, buffer = cv2.imencode(ext, buffer_image, params)
    if not ok:
        raise ScannerError(f"Failed to encode {image} as {fmt}")
    return EncodedImage(buffer.tobytes(), MIME_TYPES[fmt])


def compress_for_upload(
    image: RasterImage,
    max_bytes: int = UPLOAD_MAX_BYTES,
    max_width: int = UPLOAD_MAX_WIDTH,
    max_height: int = UPLOAD_MAX_HEIGHT,
) -> EncodedImage:
    """
    Shrink and JPEG-encode an image for storage.

    Steps the quality down until the encoded size fits max_bytes; if no
    step fits, the lowest-quality attempt is returned.
    """
    fitted = resize_to_fit(image, max_width, max_height)

    encoded = None
    for quality in UPLOAD_QUALITY_STEPS:
        encoded = encode_image(fitted, 'JPEG', quality)
        if len(encoded.data) <= max_bytes:
            logger.debug("Compressed %s to %d bytes at quality %d", fitted, len(encoded.data), quality)
            return encoded

    logger.warning("Could not compress %s below %d bytes, returning %d bytes",
                   fitted, max_bytes, len(encoded.data))
    return encoded


def apply_brightness_contrast(image: RasterImage, brightness: float = DEFAULT_PERCENT,
                              contrast: float = DEFAULT_PERCENT) -> RasterImage:
    """
    Adjust brightness then contrast, both given as percentages.

    Brightness adds (brightness - 100)% of 255 to each color channel;
    contrast scales the distance from mid-gray 128. Alpha is untouched.
    """
    if brightness == DEFAULT_PERCENT and contrast == DEFAULT_PERCENT:
        return image

    pixels = image.pixels.astype(np.float64)
    rgb = pixels[:, :, :3]
    rgb += (brightness - 100.0) / 100.0 * 255.0
    rgb[:] = (rgb - 128.0) * (contrast / 100.0) + 128.0

    out = image.copy_pixels()
    out[:, :, :3] = np.rint(np.clip(rgb, 0, 255)).astype(np.uint8)
    return RasterImage(out)


def rotate_image(image: RasterImage, degrees: float) -> RasterImage:
    """
    Rotate about the image center, keeping the canvas size.

    Positive degrees rotate clockwise; uncovered corners become transparent.
    """
    if degrees % 360 == 0:
        return image

    center = (image.width / 2.0, image.height / 2.0)
    # OpenCV treats positive angles as counter-clockwise
    matrix = cv2.getRotationMatrix2D(center, -degrees, 1.0)
    rotated = cv2.warpAffine(
        image.copy_pixels(), matrix, (image.width, image.height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0, 0),
    )
    return RasterImage(rotated)


def crop_image(image: RasterImage, region: CropRegion) -> RasterImage:
    """Crop an axis-aligned region, rounded to whole pixels and clipped to the image."""
    x0 = min(max(int(round(region.x)), 0), image.width - 1)
    y0 = min(max(int(round(region.y)), 0), image.height - 1)
    x1 = min(max(x0 + int(round(region.width)), x0 + 1), image.width)
    y1 = min(max(y0 + int(round(region.height)), y0 + 1), image.height)
    return RasterImage(image.pixels[y0:y1, x0:x1])


def new_record_id() -> str:
    return str(uuid.uuid4())


def auto_process_card(
    image_bytes: Union[bytes, str],
    detector: Optional[EdgeDetector] = None,
    transformer: Optional[PerspectiveTransformer] = None,
    strategy: RectifyStrategy = RectifyStrategy.HOMOGRAPHY,
    max_dimension: Optional[int] = None,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
) -> ProcessedCard:
    """
    Decode, detect, rectify and enhance a card photo in one pass.

    Args:
        image_bytes: Raw image bytes or base64 string
        detector: Edge detector to use (default settings if omitted)
        transformer: Perspective transformer to use
        strategy: Rectification strategy for the detected quadrilateral
        max_dimension: Optional cap on the decoded image's longest edge
        output_format: Encoding of the final raster

    Returns:
        ProcessedCard with the final raster, its encoded bytes and the detection

    Raises:
        DecodeFailure: If the input cannot be decoded
    """
    image = decode_image(image_bytes, max_dimension=max_dimension)

    detector = detector or EdgeDetector()
    transformer = transformer or PerspectiveTransformer()

    candidate = detector.detect(image)
    logger.info("Detected card with confidence %.3f%s", candidate.confidence,
                " (fallback)" if candidate.is_fallback else "")

    result = transformer.rectify(image, candidate.quad, strategy)
    final = apply_brightness_contrast(result.image, AUTO_ENHANCE_BRIGHTNESS, AUTO_ENHANCE_CONTRAST)

    return ProcessedCard(
        record_id=new_record_id(),
        image=final,
        encoded=encode_image(final, output_format),
        candidate=candidate,
        fell_back=result.fell_back,
    )
