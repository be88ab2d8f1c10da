"""Utility functions for sizes, units and file names"""

import re
from pathlib import Path
from typing import Iterable, Union

# Supported image formats
SUPPORTED_FORMATS = {'.jpg', '.jpeg', '.png', '.webp', '.gif', '.bmp', '.tif', '.tiff', '.avif'}

SIZE_UNITS = ['B', 'KB', 'MB', 'GB']

UNIT_MULTIPLIERS = {
    'B': 1,
    'KB': 1024,
    'MB': 1024 * 1024,
    'GB': 1024 * 1024 * 1024,
}

OUTPUT_SUFFIX = "_exact"

# Average input size above which batches are expected to need scaling
LARGE_INPUT_BYTES = 2 * 1024 * 1024

_TARGET_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")


def format_bytes(num_bytes: Union[int, float], decimals: int = 1) -> str:
    """
    Format a byte count for display using base-1024 units.

    Trailing zeros are dropped, so 1536 -> "1.5 KB" and 1024 -> "1 KB".

    Args:
        num_bytes: Byte count
        decimals: Maximum decimal places

    Returns:
        Human-readable size string
    """
    if num_bytes <= 0:
        return "0 B"

    decimals = max(0, decimals)
    index = 0
    while num_bytes >= 1024 ** (index + 1) and index < len(SIZE_UNITS) - 1:
        index += 1
    value = f"{num_bytes / (1024 ** index):.{decimals}f}"
    if '.' in value:
        value = value.rstrip('0').rstrip('.')
    return f"{value} {SIZE_UNITS[index]}"


def to_bytes(value: float, unit: str = 'KB') -> int:
    """
    Convert a size in the given unit to bytes.

    Args:
        value: Size value (must be positive)
        unit: One of B, KB, MB, GB (case-insensitive)

    Returns:
        Size in bytes

    Raises:
        ValueError: If the unit is unknown or the result is not positive
    """
    multiplier = UNIT_MULTIPLIERS.get(unit.upper())
    if multiplier is None:
        raise ValueError(f"Unknown unit: {unit}. Use one of {', '.join(SIZE_UNITS)}")

    result = int(value * multiplier)
    if result <= 0:
        raise ValueError(f"Target size must be positive, got {value} {unit}")
    return result


def parse_target_size(text: str, default_unit: str = 'KB') -> int:
    """
    Parse a target size such as "500KB", "1.5 MB" or "2048".

    Args:
        text: Size with optional unit suffix
        default_unit: Unit used when none is given

    Returns:
        Size in bytes

    Raises:
        ValueError: If the text cannot be parsed
    """
    match = _TARGET_PATTERN.match(text)
    if not match:
        raise ValueError(f"Invalid target size: {text!r}")
    value, unit = match.groups()
    return to_bytes(float(value), unit or default_unit)


def is_supported_format(filepath: Path) -> bool:
    """
    Check if file extension is supported.

    Args:
        filepath: Path to check

    Returns:
        True if extension is supported
    """
    return Path(filepath).suffix.lower() in SUPPORTED_FORMATS


def output_filename(original_name: str, extension: str = "") -> str:
    """
    Build the download name for a compressed file.

    "photo.jpeg" becomes "photo_exact.jpeg". An explicit extension replaces
    the original one (used when the output format differs from the input).

    Args:
        original_name: Input file name
        extension: Replacement extension including the dot

    Returns:
        Output file name
    """
    path = Path(original_name)
    suffix = extension or path.suffix
    return f"{path.stem}{OUTPUT_SUFFIX}{suffix}"


def get_recommendation(original_sizes: Iterable[int]) -> str:
    """
    Short hint describing how a batch will likely be compressed.

    Args:
        original_sizes: Input sizes in bytes

    Returns:
        Recommendation text
    """
    sizes = list(original_sizes)
    if not sizes:
        return "Ideal for fast web loading"
    average = sum(sizes) / len(sizes)
    if average > LARGE_INPUT_BYTES:
        return "Scaling dimensions as needed"
    return "Precision optimization active"
