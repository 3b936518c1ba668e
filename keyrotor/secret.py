"""
Secret value maps and per-store key remapping.

A rotation plugin returns a SecretMap whose keys are the natural field names
of the backend (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, ...). Each store
mapping may rename those fields before saving through its key map.
"""

from __future__ import annotations

from keyrotor.errors import KeyMapError

# field name -> freshly minted value. Never logged, never persisted.
SecretMap = dict[str, str]

# rotation output field name -> store field name
KeyMap = dict[str, str]


def remap_keys(key_map: KeyMap, values: SecretMap) -> SecretMap:
    """Rename the keys of values according to key_map.

    Mapped keys replace their original name; unmapped keys pass through.
    An empty key map returns an equal copy. Raises KeyMapError if two
    values would end up under the same name.
    """
    remapped: SecretMap = {}
    for key, value in values.items():
        new_key = key_map.get(key, key)
        if new_key in remapped:
            raise KeyMapError(f"key map sends more than one value to {new_key!r}")
        remapped[new_key] = value
    return remapped
