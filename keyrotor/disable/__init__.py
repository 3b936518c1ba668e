"""Disablement engine and the capability it drives."""

from keyrotor.disable.interface import DisableClient
from keyrotor.disable.manager import DisableManager

__all__ = ["DisableClient", "DisableManager"]
