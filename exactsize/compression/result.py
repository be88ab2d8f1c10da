"""Search state, candidates and the compression result dataclass."""

from dataclasses import dataclass
from typing import Optional, Tuple


# Scale below which the result is explained as a dimension change
SCALE_EXPLANATION_THRESHOLD = 0.99


@dataclass(frozen=True)
class Candidate:
    """One encode attempt and the parameters that produced it.

    Attributes:
        encoded_bytes: Encoder output
        quality: Quality factor used (0-1)
        scale: Linear dimension multiplier used (0-1)
        dimensions: Encoded (width, height)
    """
    encoded_bytes: bytes
    quality: float
    scale: float
    dimensions: Tuple[int, int]

    @property
    def size(self) -> int:
        """Encoded size in bytes."""
        return len(self.encoded_bytes)


@dataclass
class SearchState:
    """Bounds and best-so-far for a single search call.

    Owned by one search invocation and discarded when it returns.
    """
    low_quality: float = 0.01
    high_quality: float = 1.0
    low_scale: float = 0.01
    high_scale: float = 1.0
    best: Optional[Candidate] = None

    # Lowest parameters actually encoded, used by the fallback encode
    min_quality_tried: float = 1.0
    min_scale_tried: float = 1.0

    completed_steps: int = 0
    planned_steps: int = 0

    def record_attempt(self, quality: float, scale: float) -> None:
        """Track an encode attempt for fallback and progress purposes."""
        self.completed_steps += 1
        self.min_quality_tried = min(self.min_quality_tried, quality)
        self.min_scale_tried = min(self.min_scale_tried, scale)

    def offer(self, candidate: Candidate, target_bytes: int) -> bool:
        """Accept candidate as best-so-far if it fits the budget.

        Returns:
            True if the candidate fits the target
        """
        if candidate.size <= target_bytes:
            self.best = candidate
            return True
        return False

    @property
    def progress_percent(self) -> float:
        """Progress in percent, held below 100 until the search returns."""
        if self.planned_steps <= 0:
            return 0.0
        return min(99.0, self.completed_steps / self.planned_steps * 100)


@dataclass
class SearchSettings:
    """Tuning constants for the target-size search.

    Attributes:
        iterations: Binary search steps per phase
        min_quality: Lower bound of the quality axis (0-1)
        max_quality: Upper bound of the quality axis (0-1)
        min_scale: Lower bound of the scale axis (0-1)
        max_scale: Upper bound of the scale axis (0-1)
        phase2_quality: Fixed quality used while scaling lossy formats
        calculate_ssim: Compute SSIM of the final output
    """
    iterations: int = 16
    min_quality: float = 0.01
    max_quality: float = 1.0
    min_scale: float = 0.01
    max_scale: float = 1.0
    phase2_quality: float = 0.75
    calculate_ssim: bool = False

    def __post_init__(self):
        """Validate settings."""
        if not 1 <= self.iterations <= 64:
            raise ValueError(f"iterations must be 1-64, got {self.iterations}")
        if not 0 < self.min_quality <= self.max_quality <= 1:
            raise ValueError(
                f"quality bounds must satisfy 0 < min <= max <= 1, "
                f"got {self.min_quality}-{self.max_quality}"
            )
        if not 0 < self.min_scale <= self.max_scale <= 1:
            raise ValueError(
                f"scale bounds must satisfy 0 < min <= max <= 1, "
                f"got {self.min_scale}-{self.max_scale}"
            )
        if not 0 < self.phase2_quality <= 1:
            raise ValueError(f"phase2_quality must be in (0, 1], got {self.phase2_quality}")


@dataclass
class CompressionResult:
    """Result of a target-size search.

    Attributes:
        encoded_bytes: The compressed image data
        final_size_bytes: Actual size of compressed data
        quality: Quality percentage used (0-100)
        scale: Linear dimension multiplier used
        reduction_percentage: Size reduction relative to the input, 0-100
        explanation: Which axis was adjusted to reach the target
        format_used: Format name (JPEG, WEBP, PNG, AVIF)
        dimensions: Encoded dimensions (width, height)
        original_size_bytes: Size of the input file
        target_bytes: Requested byte budget
        success: True if the output fits the budget
        iterations: Number of encode calls made
        encoding_time_ms: Wall time spent searching
        ssim_score: Structural similarity (0-1) if calculated
    """
    encoded_bytes: bytes
    final_size_bytes: int
    quality: int
    scale: float
    reduction_percentage: float
    explanation: str
    format_used: str
    dimensions: Tuple[int, int]
    original_size_bytes: int = 0
    target_bytes: int = 0
    success: bool = True
    iterations: int = 0
    encoding_time_ms: int = 0
    ssim_score: Optional[float] = None

    @property
    def overshoot_bytes(self) -> int:
        """Bytes over the target (0 when the target was met)."""
        return max(0, self.final_size_bytes - self.target_bytes)


def reduction_percentage(original_bytes: int, final_bytes: int) -> float:
    """Percentage saved relative to the original, clamped at zero."""
    if original_bytes <= 0:
        return 0.0
    return max(0.0, (original_bytes - final_bytes) / original_bytes * 100)


def build_explanation(
    scale: float,
    quality: int,
    lossless: bool,
    dimensions: Tuple[int, int],
) -> str:
    """Describe which axis was adjusted.

    Dimension scaling takes priority, then the lossless container case,
    then the quality setting.
    """
    if scale < SCALE_EXPLANATION_THRESHOLD:
        width, height = dimensions
        return (
            f"Dimensions scaled to {scale * 100:.0f}% ({width}x{height}) "
            f"to reach the target size"
        )
    if lossless:
        return "Lossless format kept at full size; container compression optimized"
    return f"Quality set to {quality}% at original dimensions"


@dataclass
class EncoderOptions:
    """Format-specific encoding options held fixed during a search.

    Attributes:
        chroma_subsampling: JPEG chroma mode (0=4:4:4, 1=4:2:2, 2=4:2:0)
        progressive: Enable progressive JPEG encoding
        use_mozjpeg: Apply MozJPEG lossless optimization
        effort: Encoder effort level (format-specific)
    """
    chroma_subsampling: int = 2
    progressive: bool = False
    use_mozjpeg: bool = False
    effort: int = 4  # AVIF/WebP effort (0-10, higher = slower/better)

    def __post_init__(self):
        """Validate options."""
        if self.chroma_subsampling not in (0, 1, 2):
            raise ValueError(
                f"chroma_subsampling must be 0, 1, or 2, got {self.chroma_subsampling}"
            )
        if not 0 <= self.effort <= 10:
            raise ValueError(f"effort must be 0-10, got {self.effort}")
