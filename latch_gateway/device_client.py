from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from latch_gateway.device_state import DeviceState
from latch_gateway.http_errors import UpstreamHTTPError

logger = logging.getLogger(__name__)


class DeviceSyncClient:
    """
    Device side of the sync contract: poll /device/sync for desired state and report
    observations through /device/update. A write by any other actor is only seen on the
    next poll.
    """

    def __init__(self, *, base_url: str, timeout_s: float = 5.0, session: Optional[requests.Session] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    def _url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{self._base_url}{path}"

    def _request(self, method: str, path: str, *, json_body: Optional[Any] = None) -> Any:
        try:
            resp = self._session.request(
                method=method,
                url=self._url(path),
                json=json_body,
                timeout=self._timeout_s,
            )
        except requests.RequestException as e:
            raise UpstreamHTTPError(
                status_code=502,
                message="Failed to reach gateway",
                details=str(e),
            ) from e

        if 200 <= resp.status_code < 300:
            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError:
                return resp.text

        details: Any
        try:
            details = resp.json()
        except ValueError:
            details = {"raw": resp.text}

        msg = f"Gateway error ({resp.status_code})"
        raise UpstreamHTTPError(status_code=resp.status_code, message=msg, details=details)

    def sync(self) -> Dict[str, Any]:
        node = self._request("GET", "/device/sync")
        return node if isinstance(node, dict) else {}

    def state(self) -> DeviceState:
        return DeviceState.from_node(self.sync())

    def report(self, **fields: Any) -> Any:
        body = {k: v for k, v in fields.items() if v is not None}
        return self._request("POST", "/device/update", json_body=body)

    def poll(
        self,
        on_state: Callable[[DeviceState], None],
        *,
        interval_s: float = 2.0,
        iterations: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Poll until `iterations` is reached (forever when None).
        Gateway errors are logged and the next poll proceeds as scheduled.
        """
        count = 0
        while iterations is None or count < iterations:
            try:
                on_state(self.state())
            except UpstreamHTTPError as e:
                logger.error("Device sync failed (%s): %s", e.status_code, e.message)
            count += 1
            if iterations is None or count < iterations:
                sleep(interval_s)
