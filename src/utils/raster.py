"""
Raster buffer shared by the image stages.

Provides:
- RasterBuffer: owned width x height x RGBA pixel grid
- Conversion from/to OpenCV arrays (gray, BGR, BGRA)
- Luminance-weighted grayscale helpers
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


@dataclass
class RasterBuffer:
    """
    An RGBA pixel buffer.

    ``pixels`` has shape (height, width, 4), dtype uint8, channel order
    R, G, B, A. A stage that receives a buffer owns it and either mutates
    it in place or returns a new one.
    """
    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Negative raster size: {self.width}x{self.height}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Raster pixels must be uint8, got {self.pixels.dtype}")
        if self.pixels.size != self.width * self.height * 4:
            raise ValueError(
                f"Pixel count {self.pixels.size} does not match "
                f"{self.width}x{self.height}x4"
            )
        self.pixels = self.pixels.reshape(self.height, self.width, 4)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def blank(cls, width: int, height: int, fill: int = 255) -> "RasterBuffer":
        """Create an opaque buffer filled with a single gray level."""
        pixels = np.full((height, width, 4), fill, dtype=np.uint8)
        pixels[:, :, 3] = 255
        return cls(width, height, pixels)

    @classmethod
    def from_gray(cls, gray: np.ndarray) -> "RasterBuffer":
        """Wrap a 2-D grayscale array."""
        gray = np.asarray(gray)
        if gray.ndim != 2:
            raise ValueError(f"Expected 2-D grayscale array, got shape {gray.shape}")
        gray = np.clip(gray, 0, 255).astype(np.uint8)
        h, w = gray.shape
        pixels = np.empty((h, w, 4), dtype=np.uint8)
        pixels[:, :, 0] = gray
        pixels[:, :, 1] = gray
        pixels[:, :, 2] = gray
        pixels[:, :, 3] = 255
        return cls(w, h, pixels)

    @classmethod
    def from_array(cls, image: np.ndarray, order: str = "bgr") -> "RasterBuffer":
        """
        Build a buffer from an OpenCV-style array.

        Args:
            image: Grayscale (H, W), color (H, W, 3) or color+alpha (H, W, 4)
            order: Channel order of color input, 'bgr' (OpenCV) or 'rgb'

        Returns:
            RasterBuffer in RGBA order
        """
        image = np.asarray(image)
        if image.ndim == 2:
            return cls.from_gray(image)
        if image.ndim != 3 or image.shape[2] not in (1, 3, 4):
            raise ValueError(f"Unexpected image shape: {image.shape}")
        if image.shape[2] == 1:
            return cls.from_gray(image[:, :, 0])

        image = image.astype(np.uint8, copy=False)
        h, w = image.shape[:2]
        pixels = np.empty((h, w, 4), dtype=np.uint8)
        color = image[:, :, :3]
        if order == "bgr":
            color = color[:, :, ::-1]
        elif order != "rgb":
            raise ValueError(f"Unknown channel order: {order}")
        pixels[:, :, :3] = color
        pixels[:, :, 3] = image[:, :, 3] if image.shape[2] == 4 else 255
        return cls(w, h, pixels)

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes) -> "RasterBuffer":
        """Wrap raw RGBA bytes (row-major, 4 bytes per pixel)."""
        pixels = np.frombuffer(data, dtype=np.uint8).copy()
        return cls(width, height, pixels)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def max_dimension(self) -> int:
        return max(self.width, self.height)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def to_bytes(self) -> bytes:
        return self.pixels.tobytes()

    def to_gray(self) -> np.ndarray:
        """Luminance-weighted grayscale as a uint8 (H, W) array."""
        rgb = self.pixels[:, :, :3].astype(np.float32)
        r, g, b = LUMA_WEIGHTS
        gray = rgb[:, :, 0] * r + rgb[:, :, 1] * g + rgb[:, :, 2] * b
        return np.clip(np.rint(gray), 0, 255).astype(np.uint8)

    def to_bgr(self) -> np.ndarray:
        """Color array in OpenCV channel order."""
        return np.ascontiguousarray(self.pixels[:, :, 2::-1])

    def luminance_at(self, x: int, y: int) -> float:
        r, g, b, _ = self.pixels[y, x]
        wr, wg, wb = LUMA_WEIGHTS
        return float(r) * wr + float(g) * wg + float(b) * wb

    def copy(self) -> "RasterBuffer":
        return RasterBuffer(self.width, self.height, self.pixels.copy())

    def __repr__(self) -> str:
        return f"RasterBuffer(width={self.width}, height={self.height})"
