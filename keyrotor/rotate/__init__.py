"""Rotation engine and the capabilities it drives."""

from keyrotor.rotate.interface import RotationClient, StorageClient
from keyrotor.rotate.manager import RotationManager

__all__ = ["RotationClient", "RotationManager", "StorageClient"]
