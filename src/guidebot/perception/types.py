"""Perception types - samples, buckets, motion."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DistanceBucket(Enum):
    """How far the tracked person is. MISSING = no detection."""

    CLOSE = "close"
    MIDRANGE = "midrange"
    FAR = "far"
    MISSING = "missing"


class AngleBucket(Enum):
    """Which side of the robot the person is on. GONE = no detection."""

    LEFT = "left"
    RIGHT = "right"
    MIDDLE = "middle"
    GONE = "gone"


class YMotion(Enum):
    CLOSER = "closer"
    FURTHER = "further"
    NOWHERE = "nowhere"


class XMotion(Enum):
    LEFTER = "lefter"
    RIGHTER = "righter"
    NOWHERE = "nowhere"


@dataclass(frozen=True)
class PerceptionSample:
    """One reading of the detection stream."""

    detected: bool
    angle: float  # radians, left positive
    distance: float  # meters
    observed_at: float  # monotonic seconds


@dataclass(frozen=True)
class PerceptionSnapshot:
    """Latest classification published by the tracker (latest value wins)."""

    distance: DistanceBucket = DistanceBucket.MISSING
    angle: AngleBucket = AngleBucket.GONE
    x_motion: XMotion = XMotion.NOWHERE
    y_motion: YMotion = YMotion.NOWHERE
    sample: PerceptionSample | None = None

    @property
    def present(self) -> bool:
        return self.distance is not DistanceBucket.MISSING

    def summary(self) -> dict:
        return {
            "distance": self.distance.value,
            "angle": self.angle.value,
            "x_motion": self.x_motion.value,
            "y_motion": self.y_motion.value,
            "distance_m": round(self.sample.distance, 3) if self.sample else None,
            "angle_rad": round(self.sample.angle, 3) if self.sample else None,
        }
