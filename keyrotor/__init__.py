"""keyrotor: credential rotation and disablement with pluggable backends."""

__version__ = "0.1.0"
