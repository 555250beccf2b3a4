from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Optional

from fastapi import Depends, Request

from latch_gateway.config import Settings
from latch_gateway.deps import get_settings, get_store
from latch_gateway.http_errors import Unauthorized
from latch_gateway.oauth import is_expired, token_path
from latch_gateway.store import StateStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


def extract_basic_credentials(authorization: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Decode `Authorization: Basic base64(id:secret)`; (None, None) if absent or malformed."""
    if not authorization or not authorization.lower().startswith("basic "):
        return None, None
    try:
        raw = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None, None
    if ":" not in raw:
        return None, None
    client_id, client_secret = raw.split(":", 1)
    return client_id, client_secret


def validate_bearer(
    store: StateStore,
    authorization: Optional[str],
    *,
    enforce_expiry: bool = False,
) -> Optional[dict[str, Any]]:
    """
    Return the stored TokenRecord for the request's bearer token, or None.
    A missing or malformed header never touches the store.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        return None
    record = store.get(token_path(token))
    if not isinstance(record, dict):
        return None
    if enforce_expiry and is_expired(record.get("createdAt"), record.get("expires_in")):
        return None
    return record


def require_token(
    request: Request,
    store: StateStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    record = validate_bearer(
        store,
        request.headers.get("authorization"),
        enforce_expiry=settings.oauth_enforce_expiry,
    )
    if record is None:
        logger.warning("Rejected %s %s: missing or unknown bearer token", request.method, request.url.path)
        raise Unauthorized("Missing or invalid bearer token")
    return record
