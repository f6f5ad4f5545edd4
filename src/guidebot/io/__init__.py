"""IO: robot capability adapters (mock, local desktop)."""

from .robot_interface import RobotInterface
from .mock_robot import MockRobot

__all__ = ["RobotInterface", "MockRobot"]
