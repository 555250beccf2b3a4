from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

from latch_gateway.device_state import PIR_MOTION, RELAY_OFF, RELAY_ON, DeviceState, DeviceStateRepository
from latch_gateway.http_errors import UnsupportedInteraction

logger = logging.getLogger(__name__)

COMPONENT_MAIN = "main"
CAP_SWITCH = "st.switch"
CAP_MOTION = "st.motionSensor"

DISCOVERY_REQUEST = "discoveryRequest"
STATE_REFRESH_REQUEST = "stateRefreshRequest"
COMMAND_REQUEST = "commandRequest"

# command -> relay value
SWITCH_COMMANDS = {"on": RELAY_ON, "off": RELAY_OFF}
# namespaced and bare ids, nothing else
SWITCH_CAPABILITIES = frozenset({CAP_SWITCH, "switch"})


def is_switch_capability(capability: Any) -> bool:
    return isinstance(capability, str) and capability in SWITCH_CAPABILITIES


def iter_commands(device_commands: Any) -> Iterator[dict[str, Any]]:
    """
    Flatten the command payload in list order.

    Accepts both a list of per-device entries ({"externalDeviceId", "commands": [...]})
    and a flat list of command objects.
    """
    if not isinstance(device_commands, list):
        return
    for entry in device_commands:
        if not isinstance(entry, dict):
            continue
        nested = entry.get("commands")
        if isinstance(nested, list):
            for cmd in nested:
                if isinstance(cmd, dict):
                    yield cmd
        elif "capability" in entry:
            yield entry


class SchemaConnector:
    """
    Translates the platform's interaction envelopes onto the device node.

    Responses are always built from a fresh store read, after every command of the
    request has been written.
    """

    def __init__(
        self,
        devices: DeviceStateRepository,
        *,
        external_device_id: str,
        friendly_name: str,
        manufacturer: str,
        model: str,
        device_handler_type: str,
    ) -> None:
        self._devices = devices
        self._external_device_id = external_device_id
        self._friendly_name = friendly_name
        self._manufacturer = manufacturer
        self._model = model
        self._device_handler_type = device_handler_type

    def handle(self, body: Any) -> dict[str, Any]:
        headers = body.get("headers") if isinstance(body, dict) else None
        headers = headers if isinstance(headers, dict) else {}
        interaction = headers.get("interactionType")

        if interaction == DISCOVERY_REQUEST:
            return self.discovery(headers)
        if interaction == STATE_REFRESH_REQUEST:
            return self.state_refresh(headers)
        if interaction == COMMAND_REQUEST:
            commands = body.get("deviceCommands")
            if commands is None:
                commands = body.get("devices")
            return self.command(headers, commands)

        logger.warning("Unsupported interactionType: %r", interaction)
        raise UnsupportedInteraction(f"Unsupported interactionType: {interaction}")

    def _response_headers(self, request_headers: dict[str, Any], interaction_type: str) -> dict[str, Any]:
        return {
            "schema": request_headers.get("schema", "st-schema"),
            "version": request_headers.get("version", "1.0"),
            "interactionType": interaction_type,
            "requestId": request_headers.get("requestId"),
        }

    def device_descriptor(self) -> dict[str, Any]:
        return {
            "externalDeviceId": self._external_device_id,
            "deviceCookie": {},
            "friendlyName": self._friendly_name,
            "manufacturerInfo": {
                "manufacturerName": self._manufacturer,
                "modelName": self._model,
            },
            "deviceHandlerType": self._device_handler_type,
            "components": [
                {
                    "id": COMPONENT_MAIN,
                    "capabilities": [{"id": CAP_SWITCH}, {"id": CAP_MOTION}],
                }
            ],
        }

    def device_states(self, state: DeviceState) -> list[dict[str, Any]]:
        return [
            {
                "externalDeviceId": self._external_device_id,
                "deviceCookie": {},
                "states": [
                    {
                        "component": COMPONENT_MAIN,
                        "capability": CAP_SWITCH,
                        "attribute": "switch",
                        "value": "on" if state.relay == RELAY_ON else "off",
                    },
                    {
                        "component": COMPONENT_MAIN,
                        "capability": CAP_MOTION,
                        "attribute": "motion",
                        "value": "active" if state.pir == PIR_MOTION else "inactive",
                    },
                ],
            }
        ]

    def discovery(self, headers: dict[str, Any]) -> dict[str, Any]:
        return {
            "headers": self._response_headers(headers, "discoveryResponse"),
            "requestGrantCallbackAccess": False,
            "devices": [self.device_descriptor()],
        }

    def state_refresh(self, headers: dict[str, Any]) -> dict[str, Any]:
        return {
            "headers": self._response_headers(headers, "stateRefreshResponse"),
            "deviceState": self.device_states(self._devices.read()),
        }

    def command(self, headers: dict[str, Any], device_commands: Any) -> dict[str, Any]:
        applied = 0
        for cmd in iter_commands(device_commands):
            if not is_switch_capability(cmd.get("capability")):
                continue
            relay = SWITCH_COMMANDS.get(cmd.get("command"))
            if relay is None:
                continue
            self._devices.set_field("relay", relay)
            applied += 1
        logger.info("Applied %d switch command(s) for request %s", applied, headers.get("requestId"))

        return {
            "headers": self._response_headers(headers, "commandResponse"),
            "deviceState": self.device_states(self._devices.read()),
        }
