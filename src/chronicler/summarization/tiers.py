"""Distance-based tier classification for transcript floors."""

from enum import Enum


class Tier(str, Enum):
    """Compression level assigned to a floor relative to the current floor."""

    ORIGINAL = "original"
    MINOR = "minor"
    COMPRESSED = "compressed"


def classify(target_floor: int, current_floor: int, minor_threshold: int, major_threshold: int) -> Tier:
    """
    Decide how a floor should be represented in the context window.

    With minor_threshold=8, major_threshold=25 and current_floor=50:
    - floors 43-50 (distance 0-7): original text
    - floors 26-42 (distance 8-24): per-turn summary
    - floors 1-25 (distance 25+): compressed (digest or merged summary)

    Args:
        target_floor: Floor being classified
        current_floor: Latest floor of the transcript
        minor_threshold: Distance at which raw text gives way to summaries
        major_threshold: Distance at which compressed records are preferred

    Returns:
        The tier for ``target_floor``
    """
    distance = current_floor - target_floor

    if distance < minor_threshold:
        return Tier.ORIGINAL
    if distance < major_threshold:
        return Tier.MINOR
    return Tier.COMPRESSED
