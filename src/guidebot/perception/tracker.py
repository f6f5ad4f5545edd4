"""PerceptionTracker: raw presence/angle/distance samples -> discrete direction/motion state."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from guidebot.io.robot_interface import DetectionStatus, RobotInterface
from guidebot.orchestrator.config import OrchestratorConfig

from .types import (
    AngleBucket,
    DistanceBucket,
    PerceptionSample,
    PerceptionSnapshot,
    XMotion,
    YMotion,
)

logger = logging.getLogger(__name__)


def classify_distance(
    sample: PerceptionSample,
    close_m: float = 1.0,
    midrange_m: float = 1.5,
) -> DistanceBucket:
    """Bucket a sample by distance. Boundary values fall into the farther bucket."""
    # A detection with no range reading is a sensor gap, not a person at 0 m
    if not sample.detected or sample.distance <= 0.0:
        return DistanceBucket.MISSING
    if sample.distance < close_m:
        return DistanceBucket.CLOSE
    if sample.distance < midrange_m:
        return DistanceBucket.MIDRANGE
    return DistanceBucket.FAR


def classify_angle(sample: PerceptionSample, dead_zone: float = 0.1) -> AngleBucket:
    if not sample.detected or sample.distance <= 0.0:
        return AngleBucket.GONE
    if sample.angle > dead_zone:
        return AngleBucket.LEFT
    if sample.angle < -dead_zone:
        return AngleBucket.RIGHT
    return AngleBucket.MIDDLE


def classify_x_motion(
    previous: PerceptionSample,
    current: PerceptionSample,
    bucket: DistanceBucket,
    thresholds: dict[DistanceBucket, float],
) -> XMotion:
    """Lateral motion; the closer the person, the larger the angle change needed."""
    threshold = thresholds.get(bucket)
    if threshold is None:
        return XMotion.NOWHERE
    delta = current.angle - previous.angle
    if delta > threshold:
        return XMotion.LEFTER
    if delta < -threshold:
        return XMotion.RIGHTER
    return XMotion.NOWHERE


def classify_y_motion(previous: PerceptionSample, current: PerceptionSample, threshold: float = 0.01) -> YMotion:
    delta = current.distance - previous.distance
    if delta > threshold:
        return YMotion.FURTHER
    if delta < -threshold:
        return YMotion.CLOSER
    return YMotion.NOWHERE


class PerceptionTracker:
    """Samples the robot's detection stream and publishes a PerceptionSnapshot per sample.

    Publishing is a plain assignment through `publish`; readers see the newest value
    within one sampling interval and no atomic multi-reader snapshot is attempted.
    """

    def __init__(
        self,
        robot: RobotInterface,
        config: OrchestratorConfig,
        publish: Callable[[PerceptionSnapshot], None],
    ) -> None:
        self._robot = robot
        self._config = config
        self._publish = publish
        self._previous: PerceptionSample | None = None
        self._latest = PerceptionSnapshot()
        self._x_thresholds = {
            DistanceBucket.FAR: config.x_motion_far_rad,
            DistanceBucket.MIDRANGE: config.x_motion_midrange_rad,
            DistanceBucket.CLOSE: config.x_motion_close_rad,
        }

    @property
    def latest(self) -> PerceptionSnapshot:
        return self._latest

    def update(self, sample: PerceptionSample) -> PerceptionSnapshot:
        """Classify one sample against the previous one and publish the result."""
        cfg = self._config
        distance = classify_distance(sample, cfg.close_distance_m, cfg.midrange_distance_m)
        angle = classify_angle(sample, cfg.angle_dead_zone_rad)
        x_motion, y_motion = self._latest.x_motion, self._latest.y_motion
        previous = self._previous
        if distance is DistanceBucket.MISSING:
            x_motion, y_motion = XMotion.NOWHERE, YMotion.NOWHERE
        elif (
            previous is not None
            and previous.detected
            and previous.distance > 0.0
            and (previous.angle, previous.distance) != (sample.angle, sample.distance)
        ):
            x_motion = classify_x_motion(previous, sample, distance, self._x_thresholds)
            y_motion = classify_y_motion(previous, sample, cfg.y_motion_threshold_m)

        snapshot = PerceptionSnapshot(
            distance=distance,
            angle=angle,
            x_motion=x_motion,
            y_motion=y_motion,
            sample=sample,
        )
        if snapshot.distance is not self._latest.distance:
            logger.debug("Perception: %s -> %s", self._latest.distance.value, snapshot.distance.value)
        self._previous = sample
        self._latest = snapshot
        self._publish(snapshot)
        return snapshot

    def reset(self) -> None:
        """Forget history and publish an empty snapshot (used on full restart)."""
        self._previous = None
        self._latest = PerceptionSnapshot()
        self._publish(self._latest)

    def read_sample(self, detected: bool | None = None) -> PerceptionSample:
        """Angle and distance now; the detection signal too unless the caller already read it."""
        if detected is None:
            detected = self._robot.detection_status() is DetectionStatus.DETECTED
        data = self._robot.detection_data()
        return PerceptionSample(
            detected=detected,
            angle=data.angle,
            distance=data.distance,
            observed_at=time.monotonic(),
        )

    async def run(self) -> None:
        """Sample forever at the configured interval."""
        interval = self._config.sample_interval_s
        logger.info("Perception tracker started (interval=%.2fs)", interval)
        while True:
            try:
                # Detection signal first, angle and distance one interval later
                detected = self._robot.detection_status() is DetectionStatus.DETECTED
                await asyncio.sleep(interval)
                sample = self.read_sample(detected)
            except Exception as e:
                logger.warning("Perception read failed: %s", e)
                await asyncio.sleep(interval)
                continue
            self.update(sample)
