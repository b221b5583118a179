"""
Auto Camera Control
===================

A Windows service that:
1. Disables the configured IR/webcam device when the workstation locks.
2. Re-enables it when the workstation unlocks.
3. Optionally keeps the camera enabled on lock while the room is bright enough.

The service is installed and managed with the `auto-camera-control` command.
"""

VERSION = "1.0.0"

SERVICE_NAME = "AutoCameraControlService"
SERVICE_DISPLAY_NAME = "Auto Camera Control"
SERVICE_DESCRIPTION = (
    "Disables the IR camera when the workstation locks and re-enables it on unlock."
)
APP_DIR_NAME = "AutoCameraControl"
