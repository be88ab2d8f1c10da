"""Target-size search over quality and dimension scale."""

import threading
import time
from io import BytesIO
from typing import Callable, Optional

from PIL import Image

from ..errors import SearchCancelled
from ..logger import get_logger
from .result import (
    Candidate,
    CompressionResult,
    EncoderOptions,
    SearchSettings,
    SearchState,
    build_explanation,
    reduction_percentage,
)
from .encoders import (
    BaseEncoder,
    SourceImage,
    calculate_ssim_inmemory,
    encoder_for_source,
    scaled_dimensions,
)


logger = get_logger("engine")

ProgressCallback = Optional[Callable[[float], None]]


class TargetSizeEncoder:
    """Finds the highest-fidelity encoding that fits a byte budget.

    Lossy formats first search quality at full size. If no quality fits,
    or the format is lossless, the dimensions are searched at a fixed
    quality. Both phases run a fixed number of binary search steps
    because encoded size is a step function of the parameters.

    Each call to search() owns its own SearchState, so one instance can
    serve concurrent searches on different images.
    """

    def __init__(
        self,
        encoder: Optional[BaseEncoder] = None,
        settings: Optional[SearchSettings] = None,
        options: Optional[EncoderOptions] = None,
    ):
        """Initialize the search.

        Args:
            encoder: Encoder to use (None = keep each source's own format)
            settings: Search tuning constants
            options: Fixed encoding options
        """
        self.encoder = encoder
        self.settings = settings or SearchSettings()
        self.options = options or EncoderOptions()

    def search(
        self,
        image: SourceImage,
        target_bytes: int,
        on_progress: ProgressCallback = None,
        stop_flag: Optional[threading.Event] = None,
    ) -> CompressionResult:
        """Encode image as close to target_bytes as possible without exceeding it.

        An unreachable target is not an error: the smallest configuration
        tried is returned with success=False.

        Args:
            image: Decoded source image
            target_bytes: Byte budget, must be positive
            on_progress: Called with a percentage after every encode
            stop_flag: Checked before every encode; raises SearchCancelled when set

        Returns:
            CompressionResult for the best candidate
        """
        if target_bytes <= 0:
            raise ValueError(f"target_bytes must be positive, got {target_bytes}")

        start_time = time.time()
        settings = self.settings
        encoder = self.encoder or encoder_for_source(image)
        lossy = not encoder.is_lossless

        state = SearchState(
            low_quality=settings.min_quality,
            high_quality=settings.max_quality,
            low_scale=settings.min_scale,
            high_scale=settings.max_scale,
            planned_steps=settings.iterations * (2 if lossy else 1),
        )

        def attempt(scale: float, quality: float) -> Candidate:
            if stop_flag is not None and stop_flag.is_set():
                raise SearchCancelled(f"Search cancelled for {image.name or 'image'}")
            encoded = encoder.encode(image, scale, quality, self.options)
            state.record_attempt(quality, scale)
            if on_progress:
                on_progress(state.progress_percent)
            return Candidate(
                encoded_bytes=encoded,
                quality=quality,
                scale=scale,
                dimensions=scaled_dimensions(image.width, image.height, scale),
            )

        logger.debug(
            "Searching %s (%dx%d, %s) for %d bytes",
            image.name or "image", image.width, image.height,
            encoder.format_name, target_bytes,
        )

        # Phase 1: quality at full size
        if lossy:
            for _ in range(settings.iterations):
                mid = (state.low_quality + state.high_quality) / 2
                if state.offer(attempt(settings.max_scale, mid), target_bytes):
                    state.low_quality = mid
                else:
                    state.high_quality = mid
            logger.debug(
                "Quality phase done: %s",
                f"best quality {state.best.quality:.3f}" if state.best else "no fit",
            )

        # Phase 2: dimensions at fixed quality
        if state.best is None:
            fixed_quality = settings.phase2_quality if lossy else 1.0
            for _ in range(settings.iterations):
                mid = (state.low_scale + state.high_scale) / 2
                if state.offer(attempt(mid, fixed_quality), target_bytes):
                    state.low_scale = mid
                else:
                    state.high_scale = mid
            logger.debug(
                "Scale phase done: %s",
                f"best scale {state.best.scale:.3f}" if state.best else "no fit",
            )

        best = state.best
        if best is None:
            # Nothing fit; return the smallest configuration tried anyway
            fallback_quality = state.min_quality_tried if lossy else 1.0
            best = attempt(state.min_scale_tried, fallback_quality)
            logger.info(
                "Target %d bytes unreachable for %s, falling back to %d bytes",
                target_bytes, image.name or "image", best.size,
            )

        result = self._build_result(image, encoder, best, target_bytes, state)
        result.encoding_time_ms = int((time.time() - start_time) * 1000)

        if on_progress:
            on_progress(100.0)

        logger.info(
            "%s: %d -> %d bytes (target %d) at quality %d%%, scale %.3f",
            image.name or "image", image.original_size, result.final_size_bytes,
            target_bytes, result.quality, result.scale,
        )
        return result

    def _build_result(
        self,
        image: SourceImage,
        encoder: BaseEncoder,
        best: Candidate,
        target_bytes: int,
        state: SearchState,
    ) -> CompressionResult:
        quality = int(round(best.quality * 100))

        ssim = None
        if self.settings.calculate_ssim:
            with Image.open(BytesIO(best.encoded_bytes)) as compressed:
                compressed.load()
                ssim = calculate_ssim_inmemory(image.image, compressed)

        return CompressionResult(
            encoded_bytes=best.encoded_bytes,
            final_size_bytes=best.size,
            quality=quality,
            scale=best.scale,
            reduction_percentage=reduction_percentage(image.original_size, best.size),
            explanation=build_explanation(
                best.scale, quality, encoder.is_lossless, best.dimensions
            ),
            format_used=encoder.format_name,
            dimensions=best.dimensions,
            original_size_bytes=image.original_size,
            target_bytes=target_bytes,
            success=best.size <= target_bytes,
            iterations=state.completed_steps,
            ssim_score=ssim,
        )


def compress_to_target(
    image: SourceImage,
    target_bytes: int,
    on_progress: ProgressCallback = None,
    settings: Optional[SearchSettings] = None,
    stop_flag: Optional[threading.Event] = None,
) -> CompressionResult:
    """Run a target-size search keeping the source's format."""
    return TargetSizeEncoder(settings=settings).search(
        image, target_bytes, on_progress=on_progress, stop_flag=stop_flag
    )
