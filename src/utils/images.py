"""
Image enhancement utilities for exam question recognition.

Provides:
- Adaptive scaling from a content-density estimate
- Grayscale conversion and denoising
- Contrast normalization (tail clipping + linear stretch, or CLAHE)
- Structure-aware sharpening of text regions
- Skew estimation and correction
- Adaptive binarization (Sauvola, Otsu blended with a local mean)
- Morphological cleanup and connected-component filtering
- Enhancement profiles and the full enhancement pipeline
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from .errors import EmptyImage
from .raster import RasterBuffer

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class EnhancementProfile:
    """
    Parameters of the eight-stage enhancement pipeline.

    Profiles share the same stage skeleton; the presets differ in target
    scale, binarization aggressiveness and sharpening strength.
    """
    name: str = "general"

    # Stage toggles (applied in this order)
    scale_enabled: bool = True
    denoise_enabled: bool = True
    contrast_enabled: bool = True
    sharpen_enabled: bool = True
    deskew_enabled: bool = True
    binarize_enabled: bool = True
    morphology_enabled: bool = True
    components_enabled: bool = True

    # 1. Adaptive scaling
    target_scale: float = 3.0
    dense_scale: float = 4.0
    sparse_scale: float = 2.5
    max_dimension: int = 6000
    density_sample_size: int = 300
    density_gradient_threshold: int = 30

    # 2. Denoise
    denoise_method: str = "median"  # median, bilateral, blur, nlmeans

    # 3. Contrast
    contrast_method: str = "stretch"  # stretch, clahe
    clip_percent: float = 0.5

    # 4. Structure-aware sharpening
    block_size: int = 16
    edge_threshold: int = 30
    min_edge_ratio: float = 0.1
    max_edge_ratio: float = 0.6
    sharpen_strength: float = 0.5

    # 5. Skew
    skew_sample_step: int = 5
    skew_edge_threshold: int = 50
    skew_max_angle: float = 45.0
    skew_min_correction: float = 0.5

    # 6. Binarization
    binarize_method: str = "sauvola"  # sauvola, otsu_local, otsu, adaptive
    sauvola_window: int = 15
    sauvola_k: float = 0.34
    sauvola_r: float = 128.0
    local_mean_factor: float = 0.9

    # 7. Morphology
    morph_radius: int = 1

    # 8. Connected components
    min_component_size: int = 20
    max_aspect_ratio: float = 10.0
    min_aspect_ratio: float = 0.1


@dataclass
class EnhancementReport:
    """Ordered, append-only log of applied enhancement steps."""
    steps: List[str] = field(default_factory=list)

    def add(self, step: str):
        self.steps.append(step)
        logger.debug(f"Enhancement step: {step}")

    def __iter__(self):
        return iter(list(self.steps))

    def __len__(self) -> int:
        return len(self.steps)


@dataclass
class EnhancementResult:
    """Result of running the enhancement pipeline."""
    image: RasterBuffer
    original_shape: Tuple[int, int]
    profile: str
    scale: float = 1.0
    content_density: float = 0.0
    skew_angle: float = 0.0
    text_blocks: int = 0
    removed_components: int = 0
    report: EnhancementReport = field(default_factory=EnhancementReport)

    @property
    def transformations(self) -> List[str]:
        return list(self.report.steps)


# ============================================================================
# Profiles
# ============================================================================

PROFILES: Dict[str, EnhancementProfile] = {
    "general": EnhancementProfile(name="general"),
    "math_dense": EnhancementProfile(
        name="math_dense",
        target_scale=3.5,
        dense_scale=4.0,
        sparse_scale=3.0,
        denoise_method="bilateral",
        binarize_method="sauvola",
        sauvola_k=0.28,
        sharpen_strength=0.7,
    ),
    "small_glyph": EnhancementProfile(
        name="small_glyph",
        target_scale=4.0,
        dense_scale=4.5,
        sparse_scale=3.5,
        denoise_method="blur",
        binarize_method="otsu_local",
        sauvola_k=0.2,
        sharpen_strength=0.9,
    ),
}


def get_profile(name: str) -> EnhancementProfile:
    """Look up an enhancement profile preset by name."""
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown enhancement profile: {name} "
            f"(available: {', '.join(sorted(PROFILES))})"
        )


# ============================================================================
# Core Enhancement Functions
# ============================================================================

def to_grayscale(image: Union[np.ndarray, RasterBuffer]) -> np.ndarray:
    """
    Convert an image to luminance-weighted grayscale.

    Args:
        image: RasterBuffer, or OpenCV array (gray, BGR or BGRA)

    Returns:
        Grayscale uint8 array
    """
    if isinstance(image, RasterBuffer):
        return image.to_gray()
    if image.ndim == 2:
        return image
    if image.ndim == 3 and image.shape[2] == 1:
        return image[:, :, 0]
    if image.ndim == 3 and image.shape[2] in (3, 4):
        return RasterBuffer.from_array(image).to_gray()

    raise ValueError(f"Unexpected image shape: {image.shape}")


def estimate_content_density(
    gray: np.ndarray,
    sample_size: int = 300,
    gradient_threshold: int = 30
) -> float:
    """
    Estimate how much of the image is covered by strokes.

    The image is down-sampled to at most ``sample_size`` pixels per side and
    the fraction of pixels whose horizontal+vertical gradient exceeds
    ``gradient_threshold`` is returned.

    Returns:
        Edge-gradient ratio in [0, 1]
    """
    import cv2

    h, w = gray.shape[:2]
    if h < 2 or w < 2:
        return 0.0

    factor = min(1.0, sample_size / max(h, w))
    if factor < 1.0:
        sample = cv2.resize(
            gray,
            (max(2, int(w * factor)), max(2, int(h * factor))),
            interpolation=cv2.INTER_AREA
        )
    else:
        sample = gray

    sample = sample.astype(np.int16)
    dx = np.abs(np.diff(sample, axis=1))[:-1, :]
    dy = np.abs(np.diff(sample, axis=0))[:, :-1]
    gradient = dx + dy

    return float(np.count_nonzero(gradient > gradient_threshold)) / gradient.size


def choose_scale(density: float, profile: EnhancementProfile) -> float:
    """Pick the scale factor for a content density."""
    if density > 0.8:
        return profile.dense_scale
    if density < 0.3:
        return profile.sparse_scale
    return profile.target_scale


def bound_scale(width: int, height: int, scale: float, max_dimension: int) -> float:
    """Clamp a scale factor so the larger side stays within max_dimension."""
    largest = max(width, height)
    if largest == 0:
        return 1.0
    return min(scale, max_dimension / float(largest))


def resize(gray: np.ndarray, scale: float) -> np.ndarray:
    """Resize by a factor, cubic when enlarging and area when shrinking."""
    import cv2

    if abs(scale - 1.0) < 1e-6:
        return gray

    h, w = gray.shape[:2]
    new_w = max(1, int(w * scale))
    new_h = max(1, int(h * scale))
    interpolation = cv2.INTER_CUBIC if scale > 1 else cv2.INTER_AREA
    return cv2.resize(gray, (new_w, new_h), interpolation=interpolation)


def fit_within(gray: np.ndarray, max_dimension: int) -> np.ndarray:
    """Shrink an image whose larger side exceeds max_dimension."""
    h, w = gray.shape[:2]
    if max(h, w) <= max_dimension:
        return gray

    import cv2

    factor = max_dimension / float(max(h, w))
    new_w = min(max_dimension, max(1, int(w * factor)))
    new_h = min(max_dimension, max(1, int(h * factor)))
    return cv2.resize(gray, (new_w, new_h), interpolation=cv2.INTER_AREA)


def adaptive_scale(
    gray: np.ndarray,
    profile: EnhancementProfile
) -> Tuple[np.ndarray, float, float]:
    """
    Scale an image according to its content density.

    Returns:
        Tuple of (scaled image, applied scale, content density)
    """
    density = estimate_content_density(
        gray,
        sample_size=profile.density_sample_size,
        gradient_threshold=profile.density_gradient_threshold
    )
    h, w = gray.shape[:2]
    scale = bound_scale(w, h, choose_scale(density, profile), profile.max_dimension)
    scaled = fit_within(resize(gray, scale), profile.max_dimension)

    logger.debug(f"Content density {density:.3f} -> scale {scale:.2f}")
    return scaled, scale, density


def denoise(
    image: np.ndarray,
    method: str = "median",
    strength: int = 10
) -> np.ndarray:
    """
    Remove noise from a grayscale image.

    Args:
        image: Grayscale image
        method: 'median' (3x3), 'bilateral', 'blur' (3x3 Gaussian) or
            'nlmeans' (non-local means)
        strength: Filter strength for non-local means

    Returns:
        Denoised image
    """
    import cv2

    if method == "median":
        denoised = cv2.medianBlur(image, 3)
    elif method == "bilateral":
        denoised = cv2.bilateralFilter(image, 5, 50, 3)
    elif method == "blur":
        denoised = cv2.GaussianBlur(image, (3, 3), 0)
    elif method == "nlmeans":
        denoised = cv2.fastNlMeansDenoising(image, None, strength, 7, 21)
    else:
        raise ValueError(f"Unknown denoise method: {method}")

    logger.debug(f"Applied {method} denoising")
    return denoised


def stretch_contrast(gray: np.ndarray, clip_percent: float = 0.5) -> np.ndarray:
    """
    Clip histogram tails and stretch the remaining range to 0-255.

    Args:
        gray: Grayscale image
        clip_percent: Percentage of pixel mass dropped at each end

    Returns:
        Contrast-normalized image
    """
    hist = np.bincount(gray.ravel(), minlength=256)
    cumulative = np.cumsum(hist)
    total = cumulative[-1]
    if total == 0:
        return gray.copy()

    cut = total * clip_percent / 100.0
    low = int(np.searchsorted(cumulative, cut, side="right"))
    high = int(np.searchsorted(cumulative, total - cut, side="left"))
    high = min(high, 255)

    if high <= low:
        return gray.copy()

    stretched = (gray.astype(np.float32) - low) * (255.0 / (high - low))
    return np.clip(stretched, 0, 255).astype(np.uint8)


def enhance_contrast(
    image: np.ndarray,
    clip_limit: float = 2.0,
    grid_size: int = 8
) -> np.ndarray:
    """
    Enhance contrast with CLAHE (Contrast Limited Adaptive Histogram Equalization).

    Args:
        image: Grayscale image
        clip_limit: Threshold for contrast limiting
        grid_size: Size of grid for histogram equalization

    Returns:
        Contrast-enhanced image
    """
    import cv2

    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(grid_size, grid_size))
    return clahe.apply(to_grayscale(image))


def detect_text_blocks(
    gray: np.ndarray,
    block_size: int = 16,
    edge_threshold: int = 30,
    min_ratio: float = 0.1,
    max_ratio: float = 0.6
) -> np.ndarray:
    """
    Flag blocks that probably contain text or symbols.

    A block is text-like when the share of its pixels with a Sobel
    magnitude above ``edge_threshold`` lies in [min_ratio, max_ratio].

    Returns:
        Boolean mask with one entry per block (rows, cols)
    """
    import cv2

    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    # Normalize the 3x3 Sobel response to per-pixel intensity steps
    magnitude = np.sqrt(gx * gx + gy * gy) / 4.0
    edges = (magnitude > edge_threshold).astype(np.float32)

    h, w = gray.shape[:2]
    rows = -(-h // block_size)
    cols = -(-w // block_size)
    padded = np.zeros((rows * block_size, cols * block_size), dtype=np.float32)
    padded[:h, :w] = edges

    counts = np.ones_like(padded)
    counts[h:, :] = 0
    counts[:, w:] = 0

    edge_sum = padded.reshape(rows, block_size, cols, block_size).sum(axis=(1, 3))
    pixel_sum = counts.reshape(rows, block_size, cols, block_size).sum(axis=(1, 3))
    ratio = edge_sum / np.maximum(pixel_sum, 1)

    return (ratio >= min_ratio) & (ratio <= max_ratio)


def sharpen_text_regions(
    gray: np.ndarray,
    block_mask: np.ndarray,
    block_size: int = 16,
    strength: float = 0.5
) -> np.ndarray:
    """
    Sharpen pixels inside text blocks, leaving background untouched.

    Uses ``g + (g - mean3x3(g)) * strength``.
    """
    import cv2

    if not block_mask.any():
        return gray.copy()

    h, w = gray.shape[:2]
    pixel_mask = np.kron(block_mask, np.ones((block_size, block_size), dtype=bool))
    pixel_mask = pixel_mask[:h, :w]

    g = gray.astype(np.float32)
    mean = cv2.blur(g, (3, 3))
    sharpened = np.clip(g + (g - mean) * strength, 0, 255).astype(np.uint8)

    result = gray.copy()
    result[pixel_mask] = sharpened[pixel_mask]
    return result


def estimate_skew_angle(
    gray: np.ndarray,
    sample_step: int = 5,
    edge_threshold: int = 50,
    max_angle: float = 45.0,
    min_samples: int = 10
) -> float:
    """
    Estimate text skew from local gradient orientations.

    Edge pixels are sampled on a grid; the orientation of the edge through
    each sample is derived from its gradient and the median of orientations
    within +/- ``max_angle`` is returned.

    Returns:
        Skew angle in degrees, counter-clockwise positive
    """
    import cv2

    g = gray.astype(np.float32)
    gx = cv2.Sobel(g, cv2.CV_32F, 1, 0, ksize=3)[::sample_step, ::sample_step] / 8.0
    gy = cv2.Sobel(g, cv2.CV_32F, 0, 1, ksize=3)[::sample_step, ::sample_step] / 8.0

    magnitude = np.sqrt(gx * gx + gy * gy)
    edge = magnitude > edge_threshold
    if np.count_nonzero(edge) < min_samples:
        return 0.0

    # Edge direction is perpendicular to the gradient; image y axis points down
    orientation = np.degrees(np.arctan2(gy[edge], gx[edge])) - 90.0
    orientation = (orientation + 90.0) % 180.0 - 90.0
    orientation = orientation[np.abs(orientation) <= max_angle]
    if orientation.size < min_samples:
        return 0.0

    return float(-np.median(orientation))


def rotate(image: np.ndarray, angle: float, border_value: int = 255) -> np.ndarray:
    """Rotate counter-clockwise by ``angle`` degrees on an enlarged canvas."""
    import cv2

    h, w = image.shape[:2]
    center = (w / 2.0, h / 2.0)
    rotation_matrix = cv2.getRotationMatrix2D(center, angle, 1.0)

    cos = abs(rotation_matrix[0, 0])
    sin = abs(rotation_matrix[0, 1])
    new_w = int(np.ceil(h * sin + w * cos))
    new_h = int(np.ceil(h * cos + w * sin))

    rotation_matrix[0, 2] += (new_w - w) / 2.0
    rotation_matrix[1, 2] += (new_h - h) / 2.0

    return cv2.warpAffine(
        image,
        rotation_matrix,
        (new_w, new_h),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border_value
    )


def deskew(
    gray: np.ndarray,
    max_angle: float = 45.0,
    min_correction: float = 0.5,
    sample_step: int = 5,
    edge_threshold: int = 50,
    return_angle: bool = False
) -> Union[np.ndarray, Tuple[np.ndarray, float]]:
    """
    Correct text skew.

    Args:
        gray: Grayscale image
        max_angle: Largest orientation considered (degrees)
        min_correction: Angles at or below this are left uncorrected
        sample_step: Sampling grid step in pixels
        edge_threshold: Minimum gradient magnitude of sampled edges
        return_angle: If True, also return the estimated angle

    Returns:
        Deskewed image, or tuple of (image, angle) if return_angle=True
    """
    angle = estimate_skew_angle(
        gray,
        sample_step=sample_step,
        edge_threshold=edge_threshold,
        max_angle=max_angle
    )

    if abs(angle) <= min_correction:
        logger.debug(f"Skew angle too small to correct: {angle:.2f}°")
        return (gray, angle) if return_angle else gray

    rotated = rotate(gray, -angle)
    logger.info(f"Deskewed image by {angle:.2f}°")

    return (rotated, angle) if return_angle else rotated


def _odd(value: int) -> int:
    value = max(3, int(value))
    return value if value % 2 == 1 else value + 1


def sauvola_threshold(
    gray: np.ndarray,
    window: int = 15,
    k: float = 0.34,
    r: float = 128.0
) -> np.ndarray:
    """
    Sauvola local threshold: ``mean * (1 + k * (std / r - 1))``.

    Returns:
        Binary image, text black (0) on white (255)
    """
    import cv2

    window = _odd(window)
    g = gray.astype(np.float32)
    mean = cv2.boxFilter(g, cv2.CV_32F, (window, window), borderType=cv2.BORDER_REFLECT)
    mean_sq = cv2.boxFilter(g * g, cv2.CV_32F, (window, window), borderType=cv2.BORDER_REFLECT)
    std = np.sqrt(np.maximum(mean_sq - mean * mean, 0))

    threshold = mean * (1.0 + k * (std / r - 1.0))
    return np.where(g > threshold, 255, 0).astype(np.uint8)


def otsu_local_threshold(
    gray: np.ndarray,
    mean_factor: float = 0.9,
    window: Optional[int] = None
) -> np.ndarray:
    """
    Global Otsu threshold blended with a local adaptive term.

    Each pixel uses ``min(otsu, local_mean * mean_factor)`` with a window of
    ``max(15, min(w, h) / 20)`` pixels.
    """
    import cv2

    h, w = gray.shape[:2]
    if window is None:
        window = max(15, min(w, h) // 20)
    window = _odd(window)

    otsu, _ = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    local_mean = cv2.boxFilter(
        gray.astype(np.float32), cv2.CV_32F, (window, window),
        borderType=cv2.BORDER_REFLECT
    )
    threshold = np.minimum(float(otsu), local_mean * mean_factor)
    return np.where(gray.astype(np.float32) > threshold, 255, 0).astype(np.uint8)


def binarize(
    image: np.ndarray,
    method: str = "sauvola",
    threshold: int = 0,
    block_size: int = 11,
    c: int = 2,
    window: int = 15,
    k: float = 0.34,
    r: float = 128.0,
    mean_factor: float = 0.9
) -> np.ndarray:
    """
    Convert an image to black text on a white background.

    Args:
        image: Input image (grayscale or color)
        method: 'sauvola', 'otsu_local', 'otsu', 'adaptive' or 'fixed'
        threshold: Fixed threshold value (only for method='fixed')
        block_size: Block size for adaptive Gaussian thresholding
        c: Constant subtracted for adaptive thresholding
        window: Sauvola window size
        k: Sauvola sensitivity
        r: Sauvola dynamic range of the standard deviation
        mean_factor: Local mean factor for 'otsu_local'

    Returns:
        Binary image with values 0 and 255
    """
    import cv2

    gray = to_grayscale(image)

    if method == "sauvola":
        binary = sauvola_threshold(gray, window=window, k=k, r=r)
    elif method == "otsu_local":
        binary = otsu_local_threshold(gray, mean_factor=mean_factor)
    elif method == "otsu":
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    elif method == "adaptive":
        binary = cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY,
            _odd(block_size), c
        )
    elif method == "fixed":
        _, binary = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY)
    else:
        raise ValueError(f"Unknown binarization method: {method}")

    logger.debug(f"Applied {method} binarization")
    return binary


def morphological_cleanup(binary: np.ndarray, radius: int = 1) -> np.ndarray:
    """
    Open then close the black (text) regions of a binary image.

    Opening removes speckle, closing fills small holes in strokes.
    """
    import cv2

    if radius <= 0:
        return binary.copy()

    size = 2 * radius + 1
    kernel = cv2.getStructuringElement(cv2.MORPH_CROSS, (size, size))
    foreground = 255 - binary
    foreground = cv2.morphologyEx(foreground, cv2.MORPH_OPEN, kernel)
    foreground = cv2.morphologyEx(foreground, cv2.MORPH_CLOSE, kernel)
    return 255 - foreground


def filter_components(
    binary: np.ndarray,
    min_size: int = 20,
    max_aspect: float = 10.0,
    min_aspect: float = 0.1
) -> Tuple[np.ndarray, int]:
    """
    Erase noise components from a binary image.

    Black regions are labelled with 4-connectivity; components smaller than
    ``min_size`` pixels or with a width/height ratio above ``max_aspect`` or
    below ``min_aspect`` are painted white.

    Returns:
        Tuple of (cleaned image, number of erased components)
    """
    import cv2

    foreground = (binary == 0).astype(np.uint8)
    count, labels, stats, _ = cv2.connectedComponentsWithStats(foreground, connectivity=4)
    if count <= 1:
        return binary.copy(), 0

    widths = stats[:, cv2.CC_STAT_WIDTH].astype(np.float32)
    heights = stats[:, cv2.CC_STAT_HEIGHT].astype(np.float32)
    areas = stats[:, cv2.CC_STAT_AREA]
    aspect = widths / np.maximum(heights, 1)

    remove = (areas < min_size) | (aspect > max_aspect) | (aspect < min_aspect)
    remove[0] = False  # background label

    cleaned = binary.copy()
    cleaned[remove[labels]] = 255
    return cleaned, int(np.count_nonzero(remove))


# ============================================================================
# Main Enhancement Pipeline
# ============================================================================

def enhance_image(
    image: RasterBuffer,
    profile: Union[EnhancementProfile, str, None] = None
) -> EnhancementResult:
    """
    Run the enhancement pipeline and keep a record of every step.

    Args:
        image: Decoded input image
        profile: EnhancementProfile or preset name (default 'general')

    Returns:
        EnhancementResult with the enhanced buffer and its report

    Raises:
        EmptyImage: If the input buffer has no pixels
    """
    if profile is None:
        profile = PROFILES["general"]
    elif isinstance(profile, str):
        profile = get_profile(profile)

    if image is None or image.is_empty:
        raise EmptyImage("Cannot enhance an empty image")

    original_shape = image.shape
    report = EnhancementReport()
    result = EnhancementResult(
        image=image,
        original_shape=original_shape,
        profile=profile.name,
        report=report
    )

    # 2a. Grayscale conversion happens first so every later stage is single-channel
    gray = image.to_gray()

    # 1. Adaptive scaling
    if profile.scale_enabled:
        gray, result.scale, result.content_density = adaptive_scale(gray, profile)
        report.add(
            f"scale x{result.scale:.2f} (density {result.content_density:.2f}) "
            f"-> {gray.shape[1]}x{gray.shape[0]}"
        )
    else:
        gray = fit_within(gray, profile.max_dimension)

    report.add("grayscale (luminance)")

    # 2b. Denoise
    if profile.denoise_enabled:
        gray = denoise(gray, method=profile.denoise_method)
        report.add(f"denoise_{profile.denoise_method}")

    # 3. Contrast normalization
    if profile.contrast_enabled:
        if profile.contrast_method == "clahe":
            gray = enhance_contrast(gray)
        else:
            gray = stretch_contrast(gray, clip_percent=profile.clip_percent)
        report.add(f"contrast_{profile.contrast_method}")

    # 4. Structure-aware enhancement
    if profile.sharpen_enabled:
        mask = detect_text_blocks(
            gray,
            block_size=profile.block_size,
            edge_threshold=profile.edge_threshold,
            min_ratio=profile.min_edge_ratio,
            max_ratio=profile.max_edge_ratio
        )
        result.text_blocks = int(np.count_nonzero(mask))
        gray = sharpen_text_regions(
            gray, mask, block_size=profile.block_size, strength=profile.sharpen_strength
        )
        report.add(f"sharpen {result.text_blocks} text blocks")

    # 5. Skew estimation and correction
    if profile.deskew_enabled:
        gray, result.skew_angle = deskew(
            gray,
            max_angle=profile.skew_max_angle,
            min_correction=profile.skew_min_correction,
            sample_step=profile.skew_sample_step,
            edge_threshold=profile.skew_edge_threshold,
            return_angle=True
        )
        if abs(result.skew_angle) > profile.skew_min_correction:
            gray = fit_within(gray, profile.max_dimension)
            report.add(f"deskew_{result.skew_angle:.1f}deg")

    # 6. Adaptive binarization
    if profile.binarize_enabled:
        gray = binarize(
            gray,
            method=profile.binarize_method,
            window=profile.sauvola_window,
            k=profile.sauvola_k,
            r=profile.sauvola_r,
            mean_factor=profile.local_mean_factor
        )
        report.add(f"binarize_{profile.binarize_method}")

        # 7. Morphological cleanup
        if profile.morphology_enabled:
            gray = morphological_cleanup(gray, radius=profile.morph_radius)
            report.add(f"morphology_open_close r={profile.morph_radius}")

        # 8. Connected-component filtering
        if profile.components_enabled:
            gray, result.removed_components = filter_components(
                gray,
                min_size=profile.min_component_size,
                max_aspect=profile.max_aspect_ratio,
                min_aspect=profile.min_aspect_ratio
            )
            report.add(f"components_removed {result.removed_components}")

    result.image = RasterBuffer.from_gray(gray)
    logger.info(
        f"Enhancement ({profile.name}) complete: "
        f"{original_shape[1]}x{original_shape[0]} -> {result.image.width}x{result.image.height}, "
        f"{len(report)} steps"
    )
    return result


def enhance(
    image: RasterBuffer,
    profile: Union[EnhancementProfile, str, None] = None
) -> RasterBuffer:
    """Enhance an image for recognition and return the new buffer."""
    return enhance_image(image, profile).image


def with_overrides(profile: EnhancementProfile, **overrides) -> EnhancementProfile:
    """Copy a profile with some parameters changed."""
    return replace(profile, **overrides)


# ============================================================================
# Debug Visualization
# ============================================================================

def create_comparison_image(
    original: np.ndarray,
    processed: np.ndarray,
    title_original: str = "Original",
    title_processed: str = "Enhanced"
) -> np.ndarray:
    """
    Create a side-by-side comparison of original and enhanced images.

    Args:
        original: Original image
        processed: Enhanced image
        title_original: Title for original
        title_processed: Title for enhanced

    Returns:
        Combined BGR comparison image
    """
    import cv2

    if original.ndim == 2:
        original = cv2.cvtColor(original, cv2.COLOR_GRAY2BGR)
    if processed.ndim == 2:
        processed = cv2.cvtColor(processed, cv2.COLOR_GRAY2BGR)

    h1, w1 = original.shape[:2]
    h2, w2 = processed.shape[:2]
    target_height = max(h1, h2)

    if h1 != target_height:
        original = cv2.resize(original, (max(1, int(w1 * target_height / h1)), target_height))
    if h2 != target_height:
        processed = cv2.resize(processed, (max(1, int(w2 * target_height / h2)), target_height))

    title_height = 30
    title_bar1 = np.full((title_height, original.shape[1], 3), 255, dtype=np.uint8)
    title_bar2 = np.full((title_height, processed.shape[1], 3), 255, dtype=np.uint8)

    cv2.putText(title_bar1, title_original, (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 0), 1)
    cv2.putText(title_bar2, title_processed, (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 0), 1)

    separator = np.full((target_height + title_height, 5, 3), 128, dtype=np.uint8)

    return np.hstack([
        np.vstack([title_bar1, original]),
        separator,
        np.vstack([title_bar2, processed])
    ])


# ============================================================================
# Example Usage
# ============================================================================

if __name__ == "__main__":
    import sys
    import cv2

    if len(sys.argv) > 1:
        image_path = sys.argv[1]
        output_path = sys.argv[2] if len(sys.argv) > 2 else "enhanced.png"
        profile_name = sys.argv[3] if len(sys.argv) > 3 else "general"

        loaded = cv2.imread(image_path)
        if loaded is None:
            print(f"Failed to load image: {image_path}")
            sys.exit(1)

        result = enhance_image(RasterBuffer.from_array(loaded), profile_name)

        print(f"Steps: {result.transformations}")
        print(f"Scale: {result.scale:.2f}, skew: {result.skew_angle:.2f}°")

        cv2.imwrite(output_path, result.image.to_gray())
        print(f"Saved enhanced image to: {output_path}")
    else:
        print("Usage: python images.py <input_image> [output_image] [profile]")
