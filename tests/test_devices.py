"""Tests for camera enumeration and pnputil enable/disable."""

import json
import logging

import pytest

from auto_camera_control.devices import (
    DeviceController,
    PnpCameraEnumerator,
    parse_pnp_devices,
)
from auto_camera_control.errors import ExternalToolFailure, Timeout
from auto_camera_control.event_log import EventId
from auto_camera_control.models import CameraDevice, DeviceState

from conftest import INSTANCE_ID, INTERFACE_PATH, FakeDeviceSource, FakeRunner


def make_controller(camera=None, runner=None, admin=True):
    source = FakeDeviceSource(*([camera] if camera else []))
    runner = runner if runner is not None else FakeRunner()
    return DeviceController(source=source, runner=runner, admin_check=lambda: admin), runner


def disabled(camera: CameraDevice) -> CameraDevice:
    return CameraDevice(camera.device_id, camera.name, False, camera.description)


def event_ids(caplog):
    return [getattr(record, "event_id", None) for record in caplog.records]


class TestParsePnpDevices:
    def test_single_object(self):
        output = json.dumps(
            {"InstanceId": INSTANCE_ID, "FriendlyName": "IR Camera", "Status": "OK",
             "ConfigManagerErrorCode": 0}
        )
        devices = parse_pnp_devices(output)
        assert devices == [CameraDevice(INSTANCE_ID, "IR Camera", True, "OK")]

    def test_list_with_disabled_device(self):
        output = json.dumps(
            [
                {"InstanceId": "USB\\A", "FriendlyName": "Front", "Status": "OK",
                 "ConfigManagerErrorCode": 0},
                {"InstanceId": "USB\\B", "FriendlyName": "IR", "Status": "Error",
                 "ConfigManagerErrorCode": 22},
            ]
        )
        devices = parse_pnp_devices(output)
        assert [(d.device_id, d.is_enabled) for d in devices] == [("USB\\A", True), ("USB\\B", False)]

    def test_missing_name_falls_back_to_id(self):
        devices = parse_pnp_devices(json.dumps([{"InstanceId": "USB\\A", "Status": "OK"}]))
        assert devices[0].name == "USB\\A"
        assert devices[0].is_enabled

    def test_empty_output(self):
        assert parse_pnp_devices("") == []
        assert parse_pnp_devices("  \r\n") == []


class TestPnpCameraEnumerator:
    def test_runs_powershell_without_profile(self):
        runner = FakeRunner(stdout=json.dumps({"InstanceId": INSTANCE_ID, "FriendlyName": "IR"}))
        devices = PnpCameraEnumerator(runner).enumerate()
        argv = runner.argv[0]
        assert argv[:3] == ["powershell.exe", "-NoProfile", "-NonInteractive"]
        assert "Get-PnpDevice -Class Camera,Image -PresentOnly" in argv[-1]
        assert devices[0].device_id == INSTANCE_ID

    def test_failure_raises(self):
        runner = FakeRunner(returncode=1, stderr="Get-PnpDevice : access denied")
        with pytest.raises(ExternalToolFailure) as excinfo:
            PnpCameraEnumerator(runner).enumerate()
        assert excinfo.value.exit_code == 1

    def test_unreadable_output_raises_tool_failure(self):
        runner = FakeRunner(stdout="WARNING: Get-PnpDevice is not recognized")
        with pytest.raises(ExternalToolFailure) as excinfo:
            PnpCameraEnumerator(runner).enumerate()
        assert "WARNING" in excinfo.value.output

    def test_scalar_json_raises_tool_failure(self):
        with pytest.raises(ExternalToolFailure):
            PnpCameraEnumerator(FakeRunner(stdout="42")).enumerate()


class TestListCameras:
    def test_sorted_by_name_descending_with_disabled_first(self):
        source = FakeDeviceSource(
            CameraDevice("USB\\1", "Alpha", True),
            CameraDevice("USB\\2", "Zulu", True),
            CameraDevice("USB\\3", "Zulu", False),
        )
        controller = DeviceController(source=source, runner=FakeRunner(), admin_check=lambda: True)
        assert [c.device_id for c in controller.list_cameras()] == ["USB\\3", "USB\\2", "USB\\1"]

    def test_enumeration_failure_returns_empty(self):
        class Broken:
            def enumerate(self):
                raise ExternalToolFailure("boom")

        controller = DeviceController(source=Broken(), runner=FakeRunner(), admin_check=lambda: True)
        assert controller.list_cameras() == []

    def test_unreadable_device_list_returns_empty(self):
        runner = FakeRunner(stdout="not json at all")
        controller = DeviceController(
            source=PnpCameraEnumerator(runner), runner=runner, admin_check=lambda: True
        )
        assert controller.list_cameras() == []


class TestGetState:
    def test_states(self, ir_camera):
        controller, _ = make_controller(ir_camera)
        assert controller.get_state(INSTANCE_ID) is DeviceState.ENABLED
        assert controller.get_state(INTERFACE_PATH) is DeviceState.ENABLED
        assert controller.get_state("USB\\MISSING") is DeviceState.NOT_FOUND

        controller, _ = make_controller(disabled(ir_camera))
        assert controller.get_state(INSTANCE_ID) is DeviceState.DISABLED

    def test_get_enabled_is_false_for_missing_device(self, ir_camera):
        controller, _ = make_controller(ir_camera)
        assert controller.get_enabled(INSTANCE_ID) is True
        assert controller.get_enabled("USB\\MISSING") is False


class TestSetEnabled:
    @pytest.mark.parametrize("code", [0, 3010, 50])
    def test_success_exit_codes(self, ir_camera, code):
        controller, runner = make_controller(disabled(ir_camera), FakeRunner(returncode=code))
        assert controller.enable(INSTANCE_ID) is True
        assert runner.argv == [["pnputil.exe", "/enable-device", INSTANCE_ID]]

    def test_failure_exit_code(self, ir_camera, caplog):
        controller, runner = make_controller(ir_camera, FakeRunner(returncode=1, stdout="Failed"))
        with caplog.at_level(logging.INFO):
            assert controller.disable(INSTANCE_ID) is False
        assert runner.argv == [["pnputil.exe", "/disable-device", INSTANCE_ID]]
        assert EventId.CAMERA_CONTROL_FAILED in event_ids(caplog)

    def test_already_enabled_is_a_no_op(self, ir_camera, caplog):
        controller, runner = make_controller(ir_camera)
        with caplog.at_level(logging.INFO):
            assert controller.enable(INSTANCE_ID) is True
        assert runner.calls == []
        assert EventId.CAMERA_ALREADY_ENABLED in event_ids(caplog)

    def test_already_disabled_is_a_no_op(self, ir_camera):
        controller, runner = make_controller(disabled(ir_camera))
        assert controller.disable(INSTANCE_ID) is True
        assert runner.calls == []

    def test_missing_device_never_invokes_tool(self, caplog):
        controller, runner = make_controller(None)
        with caplog.at_level(logging.INFO):
            assert controller.enable(INSTANCE_ID) is False
            assert controller.disable(INSTANCE_ID) is False
        assert runner.calls == []
        assert EventId.DEVICE_NOT_FOUND in event_ids(caplog)

    def test_requires_admin(self, ir_camera, caplog):
        controller, runner = make_controller(ir_camera, admin=False)
        with caplog.at_level(logging.INFO):
            assert controller.disable(INSTANCE_ID) is False
        assert runner.calls == []
        assert EventId.INSUFFICIENT_PERMISSIONS in event_ids(caplog)

    def test_interface_path_is_decoded_for_pnputil(self, ir_camera):
        controller, runner = make_controller(ir_camera)
        assert controller.disable(INTERFACE_PATH) is True
        assert runner.argv == [["pnputil.exe", "/disable-device", INSTANCE_ID]]

    def test_suspicious_id_is_refused(self):
        bad_id = 'USB\\VID_1" & calc'
        controller, runner = make_controller(CameraDevice(bad_id, "Odd", True))
        assert controller.disable(bad_id) is False
        assert runner.calls == []

    def test_tool_timeout_is_reported_not_raised(self, ir_camera):
        controller, runner = make_controller(ir_camera, FakeRunner(error=Timeout("too slow")))
        assert controller.disable(INSTANCE_ID) is False
        assert len(runner.calls) == 1

    def test_empty_id(self):
        controller, runner = make_controller(None)
        assert controller.enable("") is False
        assert runner.calls == []

    def test_second_enable_after_success_is_a_no_op(self, ir_camera, caplog):
        source = FakeDeviceSource(disabled(ir_camera))

        def pnputil(args, timeout):
            source.cameras = [ir_camera]
            return runner(args, timeout)

        runner = FakeRunner()
        controller = DeviceController(source=source, runner=pnputil, admin_check=lambda: True)
        with caplog.at_level(logging.INFO):
            assert controller.enable(INSTANCE_ID) is True
            assert controller.enable(INSTANCE_ID) is True
        assert runner.argv == [["pnputil.exe", "/enable-device", INSTANCE_ID]]
        assert EventId.CAMERA_ALREADY_ENABLED in event_ids(caplog)
