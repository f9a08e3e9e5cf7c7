"""Nimbus Assist - ask what's in front of you and hear what the camera sees."""

__version__ = "0.1.0"
__author__ = "Nimbus Team"

from nimbus.config import Config, load_config

__all__ = ["Config", "load_config", "__version__"]
