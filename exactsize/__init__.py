"""ExactSize: compress images to a target file size"""

from .compression import (
    CompressionResult,
    SearchSettings,
    SourceImage,
    TargetSizeEncoder,
    compress_to_target,
    decode_image,
)
from .errors import CompressionError, DecodeError, EncodeError, SearchCancelled
from .processor import ImageProcessor, ImageStatus, ImageTask
from .settings import AppSettings, load_settings, save_settings
from .utils import format_bytes, parse_target_size, to_bytes

__version__ = "1.0.0"

__all__ = [
    'CompressionResult',
    'SearchSettings',
    'SourceImage',
    'TargetSizeEncoder',
    'compress_to_target',
    'decode_image',
    'CompressionError',
    'DecodeError',
    'EncodeError',
    'SearchCancelled',
    'ImageProcessor',
    'ImageStatus',
    'ImageTask',
    'AppSettings',
    'load_settings',
    'save_settings',
    'format_bytes',
    'parse_target_size',
    'to_bytes',
]
