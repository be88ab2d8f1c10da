"""Pillow-backed decode and encode primitives.

Provides encoders for JPEG, WebP, PNG and AVIF that take a scale and a
quality factor, with graceful degradation when optional dependencies
(MozJPEG, pillow-avif-plugin, scikit-image) are not installed.
"""

import enum
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Dict, Tuple, List, Union

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import DecodeError, EncodeError
from ..logger import get_logger
from .result import EncoderOptions


logger = get_logger("encoders")


# Optional dependency checks
SSIM_AVAILABLE = False
try:
    from skimage.metrics import structural_similarity
    SSIM_AVAILABLE = True
except ImportError:
    pass

MOZJPEG_AVAILABLE = False
try:
    import mozjpeg_lossless_optimization
    MOZJPEG_AVAILABLE = True
except ImportError:
    pass

AVIF_AVAILABLE = False
try:
    import pillow_avif  # noqa: F401
    AVIF_AVAILABLE = True
except ImportError:
    pass


class EncodeFormat(enum.Enum):
    """Whether a format exposes a usable quality axis."""
    LOSSY = "lossy"
    LOSSLESS = "lossless"


@dataclass(frozen=True)
class SourceImage:
    """Decoded image handed to the search.

    Attributes:
        image: Fully loaded PIL Image
        format: Source format identifier (JPEG, PNG, WEBP, ...)
        original_size: Byte length of the input the image was decoded from
        name: Optional file name, used for output naming and logs
    """
    image: Image.Image
    format: str
    original_size: int = 0
    name: str = ""

    def __post_init__(self):
        if self.image.width < 1 or self.image.height < 1:
            raise ValueError(f"Image must be at least 1x1, got {self.image.size}")

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size


def decode_image(
    source: Union[bytes, str, Path],
    name: Optional[str] = None,
) -> SourceImage:
    """Decode bytes or a file into a SourceImage.

    EXIF orientation is applied so scaled output matches what viewers show.

    Args:
        source: Raw image bytes or a path to an image file
        name: File name to record (defaults to the path's name)

    Returns:
        Loaded SourceImage

    Raises:
        DecodeError: If the input cannot be read or is not an image
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise DecodeError(f"Could not read {path}: {e}") from e
        name = name or path.name
    else:
        data = bytes(source)

    if not data:
        raise DecodeError(f"Empty input: {name or '<bytes>'}")

    try:
        with Image.open(BytesIO(data)) as opened:
            opened.load()
            source_format = (opened.format or "").upper()
            image = ImageOps.exif_transpose(opened)
            if image is opened:
                image = opened.copy()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Could not decode {name or '<bytes>'}: {e}") from e

    if image.width < 1 or image.height < 1:
        raise DecodeError(f"Image has no pixels: {name or '<bytes>'}")

    return SourceImage(
        image=image,
        format=source_format,
        original_size=len(data),
        name=name or "",
    )


def scaled_dimensions(width: int, height: int, scale: float) -> Tuple[int, int]:
    """Apply a linear scale to both axes, never going below 1 pixel."""
    return (
        max(1, math.floor(width * scale)),
        max(1, math.floor(height * scale)),
    )


def has_alpha(image: Image.Image) -> bool:
    """Whether the image carries transparency."""
    if image.mode == 'P':
        return 'transparency' in image.info
    return image.mode in ('RGBA', 'LA', 'PA')


def to_codec_quality(quality: float) -> int:
    """Map a 0-1 quality factor onto Pillow's 1-100 quality scale."""
    return max(1, min(100, int(round(quality * 100))))


class BaseEncoder(ABC):
    """Abstract base class for format-specific encoders."""

    format_name: str
    encode_format: EncodeFormat = EncodeFormat.LOSSY
    supports_transparency: bool = False
    file_extension: str

    @property
    def is_lossless(self) -> bool:
        return self.encode_format is EncodeFormat.LOSSLESS

    def encode(
        self,
        source: SourceImage,
        scale: float = 1.0,
        quality: float = 1.0,
        options: Optional[EncoderOptions] = None,
    ) -> bytes:
        """Encode source at the given scale and quality.

        Args:
            source: Decoded image
            scale: Linear dimension multiplier (0-1]
            quality: Quality factor [0-1], ignored by lossless formats
            options: Fixed encoding options

        Returns:
            Encoded image bytes

        Raises:
            EncodeError: If the backend rejects the image or parameters
        """
        if options is None:
            options = EncoderOptions()

        try:
            image = self.prepare_image(self._resize(source.image, scale))
            return self._encode(image, to_codec_quality(quality), options)
        except (OSError, ValueError, KeyError) as e:
            raise EncodeError(f"{self.format_name} encoding failed: {e}") from e

    @abstractmethod
    def _encode(
        self,
        image: Image.Image,
        quality: int,
        options: EncoderOptions
    ) -> bytes:
        """Encode a prepared image to bytes."""
        pass

    def prepare_image(self, image: Image.Image) -> Image.Image:
        """Prepare image for encoding (mode conversion, etc).

        Formats without an alpha channel get transparent pixels composited
        on white.

        Args:
            image: Source image

        Returns:
            Image ready for encoding
        """
        if not self.supports_transparency and has_alpha(image):
            image = image.convert('RGBA')
            background = Image.new('RGB', image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[3])
            return background
        return image

    def _resize(self, image: Image.Image, scale: float) -> Image.Image:
        if scale >= 1.0:
            return image
        size = scaled_dimensions(image.width, image.height, scale)
        if size == image.size:
            return image

        # Palette and bilevel images only resample with NEAREST
        if image.mode == 'P':
            image = image.convert('RGBA' if 'transparency' in image.info else 'RGB')
        elif image.mode == '1':
            image = image.convert('L')
        return image.resize(size, Image.Resampling.LANCZOS)


class JpegEncoder(BaseEncoder):
    """JPEG encoder with MozJPEG optimization support."""

    format_name = "JPEG"
    encode_format = EncodeFormat.LOSSY
    supports_transparency = False
    file_extension = ".jpg"

    def _encode(self, image: Image.Image, quality: int, options: EncoderOptions) -> bytes:
        buffer = BytesIO()
        image.save(
            buffer,
            format='JPEG',
            quality=quality,
            optimize=True,
            progressive=options.progressive,
            subsampling=options.chroma_subsampling,
        )
        encoded_bytes = buffer.getvalue()

        if options.use_mozjpeg and MOZJPEG_AVAILABLE:
            try:
                encoded_bytes = mozjpeg_lossless_optimization.optimize(encoded_bytes)
            except Exception as e:
                logger.warning("MozJPEG optimization failed, keeping Pillow output: %s", e)

        return encoded_bytes

    def prepare_image(self, image: Image.Image) -> Image.Image:
        """Convert to RGB for JPEG."""
        image = super().prepare_image(image)
        if image.mode not in ('RGB', 'L', 'CMYK'):
            return image.convert('RGB')
        return image


class WebpEncoder(BaseEncoder):
    """Lossy WebP encoder."""

    format_name = "WEBP"
    encode_format = EncodeFormat.LOSSY
    supports_transparency = True
    file_extension = ".webp"

    def _encode(self, image: Image.Image, quality: int, options: EncoderOptions) -> bytes:
        buffer = BytesIO()
        image.save(
            buffer,
            format='WEBP',
            quality=quality,
            method=min(options.effort, 6),  # WebP method 0-6
        )
        return buffer.getvalue()

    def prepare_image(self, image: Image.Image) -> Image.Image:
        """Prepare image for WebP encoding."""
        if image.mode == 'P':
            if 'transparency' in image.info:
                return image.convert('RGBA')
            return image.convert('RGB')
        elif image.mode not in ('RGB', 'RGBA'):
            return image.convert('RGBA' if 'A' in image.getbands() else 'RGB')
        return image


class AvifEncoder(WebpEncoder):
    """AVIF encoder using pillow-avif-plugin."""

    format_name = "AVIF"
    encode_format = EncodeFormat.LOSSY
    supports_transparency = True
    file_extension = ".avif"

    def _encode(self, image: Image.Image, quality: int, options: EncoderOptions) -> bytes:
        if not AVIF_AVAILABLE:
            raise EncodeError("AVIF encoding requires pillow-avif-plugin")

        buffer = BytesIO()
        image.save(
            buffer,
            format='AVIF',
            quality=quality,
            speed=10 - options.effort,  # Convert effort to speed (0=slowest/best)
        )
        return buffer.getvalue()


class PngEncoder(BaseEncoder):
    """PNG encoder (lossless, no quality setting)."""

    format_name = "PNG"
    encode_format = EncodeFormat.LOSSLESS
    supports_transparency = True
    file_extension = ".png"

    def _encode(self, image: Image.Image, quality: int, options: EncoderOptions) -> bytes:
        buffer = BytesIO()
        image.save(buffer, format='PNG', optimize=True)
        return buffer.getvalue()

    def prepare_image(self, image: Image.Image) -> Image.Image:
        """Convert modes PNG cannot store."""
        if image.mode in ('CMYK', 'YCbCr', 'LAB', 'HSV', 'F'):
            return image.convert('RGB')
        return image


# Encoder registry
_ENCODERS: Dict[str, BaseEncoder] = {
    'JPEG': JpegEncoder(),
    'WEBP': WebpEncoder(),
    'PNG': PngEncoder(),
}

# Register AVIF if available
if AVIF_AVAILABLE:
    _ENCODERS['AVIF'] = AvifEncoder()

# Source formats that map onto a registered encoder under another name
_FORMAT_ALIASES = {
    'JPG': 'JPEG',
    'MPO': 'JPEG',
}

# Formats without a dedicated encoder are written as PNG
FALLBACK_FORMAT = 'PNG'


def get_encoder(format_name: str) -> Optional[BaseEncoder]:
    """Get encoder for format.

    Args:
        format_name: Format name (JPEG, WEBP, AVIF, PNG)

    Returns:
        Encoder instance or None if format not supported
    """
    name = format_name.upper()
    return _ENCODERS.get(_FORMAT_ALIASES.get(name, name))


def encoder_for_source(source: SourceImage) -> BaseEncoder:
    """Pick the encoder that keeps the source's format.

    Sources without a matching encoder (GIF, BMP, TIFF, ...) are re-encoded
    as PNG.
    """
    return get_encoder(source.format) or _ENCODERS[FALLBACK_FORMAT]


def get_available_formats() -> List[str]:
    """Get list of available format names.

    Returns:
        List of format names that can be used
    """
    return list(_ENCODERS.keys())


def calculate_ssim_inmemory(
    original: Image.Image,
    compressed: Image.Image
) -> Optional[float]:
    """Calculate SSIM between two images in memory.

    The compressed image is upscaled back to the original size first.

    Args:
        original: Original PIL Image
        compressed: Compressed PIL Image

    Returns:
        SSIM score (0.0 to 1.0) or None if scikit-image unavailable
    """
    if not SSIM_AVAILABLE:
        return None

    if original.size != compressed.size:
        compressed = compressed.resize(original.size, Image.Resampling.LANCZOS)

    # skimage needs at least a 7x7 window
    if min(original.size) < 7:
        return None

    # Compare in RGB unless both are grayscale
    if original.mode == 'L' and compressed.mode == 'L':
        orig_array = np.array(original)
        comp_array = np.array(compressed)
        return float(structural_similarity(orig_array, comp_array, data_range=255))

    orig_array = np.array(original.convert('RGB'))
    comp_array = np.array(compressed.convert('RGB'))

    return float(structural_similarity(
        orig_array,
        comp_array,
        data_range=255,
        channel_axis=-1
    ))


def get_encoder_capabilities() -> dict:
    """Get available encoder features.

    Returns:
        Dict with boolean flags for each feature
    """
    return {
        'ssim_validation': SSIM_AVAILABLE,
        'mozjpeg_optimization': MOZJPEG_AVAILABLE,
        'avif_encoding': AVIF_AVAILABLE,
        'formats': get_available_formats(),
    }
