from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel

from latch_gateway.store import StateStore

logger = logging.getLogger(__name__)

RELAY_ON = "1"
RELAY_OFF = "0"
PIR_MOTION = "ON"
PIR_IDLE = "Idle"
LATCH_ON = "on"
LATCH_OFF = "off"
MODE_AUTO = "auto"
MODE_MANUAL = "manual"

DEVICE_FIELDS = ("relay", "pir", "latch", "mode")


class DeviceState(BaseModel):
    relay: str = RELAY_OFF
    pir: str = PIR_IDLE
    latch: str = LATCH_OFF
    mode: str = MODE_AUTO

    @classmethod
    def from_node(cls, node: Any) -> "DeviceState":
        """
        Resolve a (possibly partial) stored node into a full state.
        Missing or empty fields fall back to their defaults.
        """
        if not isinstance(node, dict):
            return cls()
        values = {k: str(node[k]) for k in DEVICE_FIELDS if node.get(k) not in (None, "")}
        return cls(**values)


class DeviceStateRepository:
    """
    Reads and writes the single device node.

    Writes are field-level merges, so concurrent writers touching different fields do not
    clobber each other; overlapping fields are last-writer-wins. Nothing is cached.
    """

    def __init__(self, store: StateStore, node_path: str) -> None:
        self._store = store
        self._node_path = node_path

    def read_raw(self) -> dict[str, Any]:
        node = self._store.get(self._node_path)
        return node if isinstance(node, dict) else {}

    def read(self) -> DeviceState:
        return DeviceState.from_node(self._store.get(self._node_path))

    def set_field(self, field: str, value: str) -> None:
        if field not in DEVICE_FIELDS:
            raise ValueError(f"Unknown device field: {field}")
        self._store.update(self._node_path, {field: value})
        logger.info("Device %s set to %r", field, value)

    def merge(self, fields: Mapping[str, Any]) -> dict[str, str]:
        changes = {k: str(v) for k, v in fields.items() if k in DEVICE_FIELDS and v is not None}
        if changes:
            self._store.update(self._node_path, changes)
            logger.info("Device node merged: %s", changes)
        return changes

    def switch(self, on: bool) -> None:
        # Two separate writes: a reader between them can see the new relay with the old mode.
        self.set_field("relay", RELAY_ON if on else RELAY_OFF)
        self.set_field("mode", MODE_MANUAL)

    def set_mode(self, mode: str) -> None:
        self.set_field("mode", mode)
