"""
I/O utilities for the exam question recognition pipeline.

Handles:
- Image decoding from bytes and files into RasterBuffers
- Image encoding and saving
- JSON serialization
- Directory management and input type detection
"""

import json
import logging
from dataclasses import asdict
from io import BytesIO
from pathlib import Path
from typing import Any, List, Tuple, Union

import numpy as np

from .errors import EmptyImage, ImageDecodeError
from .raster import RasterBuffer

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.tiff', '.tif', '.bmp', '.webp')
TEXT_EXTENSIONS = ('.txt', '.md')


# ============================================================================
# Image Decoding
# ============================================================================

def decode_image_bytes(data: bytes) -> RasterBuffer:
    """
    Decode an encoded image (PNG, JPEG, ...) into a RasterBuffer.

    OpenCV is tried first; Pillow handles the formats OpenCV rejects.

    Args:
        data: Encoded image bytes

    Returns:
        Decoded RasterBuffer

    Raises:
        EmptyImage: If no bytes were supplied or the image has no pixels
        ImageDecodeError: If the bytes are not a decodable image
    """
    import cv2

    if not data:
        raise EmptyImage("Image payload is empty")

    buffer = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)

    if img is not None:
        if img.dtype != np.uint8:
            # 16-bit PNG/TIFF
            img = (img / 257).astype(np.uint8)
        raster = RasterBuffer.from_array(img, order="bgr")
    else:
        raster = _decode_with_pillow(data)

    if raster.is_empty:
        raise EmptyImage("Decoded image has no pixels")

    logger.debug(f"Decoded image: {raster.width}x{raster.height}")
    return raster


def _decode_with_pillow(data: bytes) -> RasterBuffer:
    from PIL import Image, UnidentifiedImageError

    try:
        with Image.open(BytesIO(data)) as pil_img:
            rgba = np.array(pil_img.convert("RGBA"))
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}")

    h, w = rgba.shape[:2]
    return RasterBuffer(w, h, rgba)


def load_image(image_path: Union[str, Path]) -> RasterBuffer:
    """
    Load an image file.

    Args:
        image_path: Path to the image file

    Returns:
        Decoded RasterBuffer

    Raises:
        FileNotFoundError: If image file doesn't exist
        ImageDecodeError: If image cannot be decoded
    """
    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    try:
        return decode_image_bytes(image_path.read_bytes())
    except ImageDecodeError:
        raise ImageDecodeError(f"Could not decode image: {image_path}")


def load_images_from_folder(
    folder_path: Union[str, Path],
    extensions: tuple = IMAGE_EXTENSIONS,
    sort: bool = True
) -> List[Tuple[Path, RasterBuffer]]:
    """
    Load all images from a folder.

    Files that fail to decode are logged and skipped.

    Args:
        folder_path: Path to the folder containing images
        extensions: Tuple of valid image extensions
        sort: If True, sort files alphabetically

    Returns:
        List of (path, RasterBuffer) pairs
    """
    folder_path = Path(folder_path)
    if not folder_path.is_dir():
        raise NotADirectoryError(f"Not a directory: {folder_path}")

    image_files = [
        f for f in folder_path.iterdir()
        if f.suffix.lower() in extensions
    ]

    if sort:
        image_files = sorted(image_files)

    logger.info(f"Found {len(image_files)} images in {folder_path}")

    images = []
    for img_path in image_files:
        try:
            images.append((img_path, load_image(img_path)))
        except (ImageDecodeError, EmptyImage) as e:
            logger.warning(f"Failed to load {img_path}: {e}")

    return images


# ============================================================================
# Image Encoding
# ============================================================================

def encode_png(image: Union[RasterBuffer, np.ndarray]) -> bytes:
    """Encode a RasterBuffer (or OpenCV array) as PNG bytes."""
    import cv2

    array = image.to_bgr() if isinstance(image, RasterBuffer) else image
    ok, encoded = cv2.imencode(".png", array)
    if not ok:
        raise ValueError("PNG encoding failed")
    return encoded.tobytes()


def save_image(
    image: Union[RasterBuffer, np.ndarray],
    output_path: Union[str, Path],
    quality: int = 95
) -> Path:
    """
    Save an image to file.

    Args:
        image: RasterBuffer or OpenCV array
        output_path: Path to save the image
        quality: JPEG quality (1-100)

    Returns:
        Path to the saved image
    """
    import cv2

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    array = image.to_bgr() if isinstance(image, RasterBuffer) else image

    if output_path.suffix.lower() in ('.jpg', '.jpeg'):
        cv2.imwrite(str(output_path), array, [cv2.IMWRITE_JPEG_QUALITY, quality])
    else:
        cv2.imwrite(str(output_path), array)

    logger.debug(f"Saved image: {output_path}")
    return output_path


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, dataclasses and result objects."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to a JSON file.

    Args:
        data: Data to serialize (dict, list, dataclass, result object)
        output_path: Path to save the JSON file
        indent: Indentation level for pretty printing
        ensure_ascii: If True, escape non-ASCII characters

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """Load data from a JSON file."""
    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def read_text(text_path: Union[str, Path]) -> str:
    """Read a UTF-8 text file (BOM tolerated)."""
    return Path(text_path).read_text(encoding='utf-8-sig')


# ============================================================================
# Directory Management
# ============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# Input Type Detection
# ============================================================================

def detect_input_type(input_path: Union[str, Path]) -> str:
    """
    Detect the type of input file or directory.

    Args:
        input_path: Path to file or directory

    Returns:
        One of: 'image', 'text', 'image_folder', 'unknown'
    """
    input_path = Path(input_path)

    if input_path.is_dir():
        has_images = any(
            f.suffix.lower() in IMAGE_EXTENSIONS
            for f in input_path.iterdir()
        )
        return 'image_folder' if has_images else 'unknown'

    if not input_path.exists():
        return 'unknown'

    suffix = input_path.suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return 'image'
    elif suffix in TEXT_EXTENSIONS:
        return 'text'

    return 'unknown'
