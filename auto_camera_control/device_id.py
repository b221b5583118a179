"""Conversion between device interface paths and PnP instance ids.

Enumeration APIs hand out interface paths such as

    \\\\?\\USB#VID_04F2&PID_B7E8&MI_00#7&37c306d&1&0000#{e5323777-f976-4f5b-9b55-b94699c46e44}\\GLOBAL

while `pnputil` wants the instance id `USB\\VID_04F2&PID_B7E8&MI_00\\7&37c306d&1&0000`.
"""

from __future__ import annotations

import re

from .errors import MalformedIdentifier

INTERFACE_PREFIX = "\\\\?\\"

_VALID_PNP_ID = re.compile(r"^[A-Za-z0-9\\_\-&#]+$")


def decode(device_path: str) -> str:
    if not device_path:
        raise MalformedIdentifier("Empty device interface path.")

    without_prefix = device_path.replace(INTERFACE_PREFIX, "")
    if len(without_prefix.split("#")) < 3:
        raise MalformedIdentifier(
            f"Invalid device interface path format: {device_path!r}"
        )

    guid_index = device_path.rfind("{")
    if guid_index == -1:
        raise MalformedIdentifier(f"No device interface GUID found in {device_path!r}")

    # Drop the prefix and the '#' that separates the instance from the GUID.
    start = len(INTERFACE_PREFIX) if device_path.startswith(INTERFACE_PREFIX) else 0
    end = guid_index - 1
    if end <= start:
        raise MalformedIdentifier(
            f"Invalid device interface path format: {device_path!r}"
        )
    return device_path[start:end].replace("#", "\\")


def is_interface_path(device_id: str) -> bool:
    return bool(device_id) and device_id.startswith(INTERFACE_PREFIX)


def to_pnp_device_id(device_id: str) -> str:
    if is_interface_path(device_id):
        return decode(device_id)
    if not device_id:
        raise MalformedIdentifier("Empty device id.")
    return device_id


def is_valid_pnp_device_id(device_id: str) -> bool:
    if not device_id or not device_id.strip():
        return False
    return bool(_VALID_PNP_ID.match(device_id))


def same_device(left: str, right: str) -> bool:
    """Compare two ids that may each be in interface-path or instance form."""
    try:
        return to_pnp_device_id(left).upper() == to_pnp_device_id(right).upper()
    except MalformedIdentifier:
        return left == right
