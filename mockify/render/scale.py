"""Scale factor between two coordinate frames.

The editor captures a Transform inside a display container (often a 50%
preview of the background). The output buffer is the background's native
resolution. Translations must be mapped between the two; scale and angle are
ratios and carry over unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

# Frames smaller than this are treated as unmeasured (collapsed container,
# layout not yet settled) rather than trusted for a ratio.
MIN_FRAME_DIMENSION = 10.0


class HasDimensions(Protocol):
    width: float | None
    height: float | None


@dataclass(frozen=True)
class ScaleFactor:
    x: float = 1.0
    y: float = 1.0


IDENTITY = ScaleFactor(1.0, 1.0)


def _usable(frame: HasDimensions | None) -> bool:
    if frame is None:
        return False
    for value in (frame.width, frame.height):
        if value is None or value < MIN_FRAME_DIMENSION:
            return False
    return True


def resolve_scale_factor(source: HasDimensions | None, target: HasDimensions | None) -> ScaleFactor:
    """Per-axis factor mapping ``source`` frame coordinates into ``target``.

    Degrades to (1, 1) with a warning when either frame is missing, has a
    non-positive dimension, or falls under the sanity floor.
    """
    if not _usable(source) or not _usable(target):
        logger.warning(
            f"[SCALE] Unusable frame (source={_describe(source)}, target={_describe(target)}), "
            "falling back to 1:1"
        )
        return IDENTITY

    return ScaleFactor(
        x=target.width / source.width,
        y=target.height / source.height,
    )


def _describe(frame: HasDimensions | None) -> str:
    if frame is None:
        return "none"
    return f"{frame.width}x{frame.height}"
