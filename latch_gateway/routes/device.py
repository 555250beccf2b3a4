from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from latch_gateway.deps import get_device_repository
from latch_gateway.device_state import MODE_AUTO, MODE_MANUAL, DeviceState, DeviceStateRepository

# Direct endpoints for the web UI and the embedded device. Unauthenticated.
router = APIRouter(tags=["device"])


class _DeviceBody(BaseModel):
    # Firmware sends relay as 0/1 numbers at times.
    model_config = ConfigDict(coerce_numbers_to_str=True)


class StateBody(_DeviceBody):
    state: str


class PirBody(_DeviceBody):
    value: str


class ModeBody(_DeviceBody):
    mode: str


class DeviceUpdateBody(_DeviceBody):
    """Partial observation from the device; unknown keys are ignored."""

    relay: Optional[str] = None
    pir: Optional[str] = None
    latch: Optional[str] = None
    mode: Optional[str] = None


@router.get("/state")
def get_state(devices: DeviceStateRepository = Depends(get_device_repository)) -> DeviceState:
    return devices.read()


@router.post("/relay")
def set_relay(body: StateBody, devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.set_field("relay", body.state)
    return {"success": True}


@router.post("/pir")
def set_pir(body: PirBody, devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.set_field("pir", body.value)
    return {"success": True}


@router.post("/latch")
def set_latch(body: StateBody, devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.set_field("latch", body.state)
    return {"success": True}


@router.post("/mode")
def set_mode(body: ModeBody, devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.set_mode(body.mode)
    return {"success": True}


@router.get("/device/sync")
def device_sync(devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    """Raw node as stored, without defaults. The device applies its own."""
    return devices.read_raw()


@router.post("/device/update")
def device_update(body: DeviceUpdateBody, devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.merge(body.model_dump(exclude_none=True))
    return {"status": "ok"}


@router.post("/control/on")
def control_on(devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.switch(True)
    return {"success": True}


@router.post("/control/off")
def control_off(devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.switch(False)
    return {"success": True}


@router.post("/control/mode/auto")
def control_mode_auto(devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.set_mode(MODE_AUTO)
    return {"success": True}


@router.post("/control/mode/manual")
def control_mode_manual(devices: DeviceStateRepository = Depends(get_device_repository)) -> Any:
    devices.set_mode(MODE_MANUAL)
    return {"success": True}
