"""Target-size compression: search engine, encoders and result types."""

from .result import (
    Candidate,
    CompressionResult,
    EncoderOptions,
    SearchSettings,
    SearchState,
)
from .engine import TargetSizeEncoder, compress_to_target
from .encoders import (
    AVIF_AVAILABLE,
    MOZJPEG_AVAILABLE,
    SSIM_AVAILABLE,
    EncodeFormat,
    SourceImage,
    decode_image,
    encoder_for_source,
    get_encoder,
    get_available_formats,
    calculate_ssim_inmemory,
    get_encoder_capabilities,
)

__all__ = [
    'Candidate',
    'CompressionResult',
    'EncoderOptions',
    'SearchSettings',
    'SearchState',
    'TargetSizeEncoder',
    'compress_to_target',
    'AVIF_AVAILABLE',
    'MOZJPEG_AVAILABLE',
    'SSIM_AVAILABLE',
    'EncodeFormat',
    'SourceImage',
    'decode_image',
    'encoder_for_source',
    'get_encoder',
    'get_available_formats',
    'calculate_ssim_inmemory',
    'get_encoder_capabilities',
]
