from __future__ import annotations

import hmac
import logging
import secrets
import time
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from latch_gateway.http_errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    MissingParameter,
    RedirectMismatch,
    UnsupportedGrantType,
)
from latch_gateway.store import StateStore, join_path

logger = logging.getLogger(__name__)

CODES_PATH = "oauth/codes"
TOKENS_PATH = "oauth/tokens"

CODE_BYTES = 20  # 40 hex chars
TOKEN_BYTES = 24  # 48 hex chars


def now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(created_at: Any, ttl_s: Any, *, now: Optional[int] = None) -> bool:
    if not isinstance(created_at, (int, float)) or not isinstance(ttl_s, (int, float)):
        # Records without usable timestamps never expire.
        return False
    current = now if now is not None else now_ms()
    return current > created_at + ttl_s * 1000


def code_path(code: str) -> str:
    return join_path(CODES_PATH, code)


def token_path(token: str) -> str:
    return join_path(TOKENS_PATH, token)


def _with_query(url: str, params: dict[str, str]) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _redact(value: str) -> str:
    return value[:6] + "..." if len(value) > 6 else "..."


class AuthorizationService:
    """
    Authorization-code grant for the smart-home platform.

    authorize() stores a code bound to the configured default user and returns the
    redirect URL; exchange_code() trades that code for an access/refresh pair exactly once.
    Codes and tokens live in the state store, nothing is kept in memory.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        default_user_id: str,
        token_expires_in: int = 3600,
        enforce_expiry: bool = False,
        code_ttl_s: int = 600,
    ) -> None:
        self._store = store
        self._client_id = client_id
        self._client_secret = client_secret
        self._default_user_id = default_user_id
        self._token_expires_in = token_expires_in
        self._enforce_expiry = enforce_expiry
        self._code_ttl_s = code_ttl_s

    def _client_matches(self, client_id: Optional[str]) -> bool:
        if not self._client_id or not client_id:
            return False
        return hmac.compare_digest(self._client_id.encode("utf-8"), client_id.encode("utf-8"))

    def _secret_matches(self, client_secret: Optional[str]) -> bool:
        if not self._client_secret or not client_secret:
            return False
        return hmac.compare_digest(self._client_secret.encode("utf-8"), client_secret.encode("utf-8"))

    def authorize(
        self,
        *,
        response_type: Optional[str],
        client_id: Optional[str],
        redirect_uri: Optional[str],
        state: Optional[str] = None,
    ) -> str:
        if response_type != "code":
            logger.warning("Authorize rejected: response_type=%r", response_type)
            raise InvalidRequest("response_type must be 'code'")
        if not self._client_matches(client_id):
            logger.warning("Authorize rejected: unknown client_id=%r", client_id)
            raise InvalidRequest("Unknown client_id")
        if not redirect_uri:
            raise MissingParameter("Missing redirect_uri")

        code = secrets.token_hex(CODE_BYTES)
        self._store.set(
            code_path(code),
            {
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "userId": self._default_user_id,
                "createdAt": now_ms(),
            },
        )
        logger.info("Issued authorization code %s for user %s", _redact(code), self._default_user_id)

        params = {"code": code}
        if state is not None:
            params["state"] = state
        return _with_query(redirect_uri, params)

    def exchange_code(
        self,
        *,
        grant_type: Optional[str],
        code: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str] = None,
    ) -> dict[str, Any]:
        if grant_type != "authorization_code":
            logger.warning("Token exchange rejected: grant_type=%r", grant_type)
            raise UnsupportedGrantType(f"Unsupported grant_type: {grant_type}")
        if not self._client_matches(client_id) or not self._secret_matches(client_secret):
            logger.warning("Token exchange rejected: bad client credentials for client_id=%r", client_id)
            raise InvalidClient("Client authentication failed")

        record = self._store.get(code_path(code)) if code else None
        if not isinstance(record, dict):
            raise InvalidGrant("Invalid or already used authorization code")
        if self._enforce_expiry and is_expired(record.get("createdAt"), self._code_ttl_s):
            self._store.remove(code_path(code))
            raise InvalidGrant("Authorization code expired")
        if redirect_uri and redirect_uri != record.get("redirect_uri"):
            raise RedirectMismatch("redirect_uri does not match the authorization request")

        access_token = secrets.token_hex(TOKEN_BYTES)
        refresh_token = secrets.token_hex(TOKEN_BYTES)
        token_record = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": self._token_expires_in,
            "token_type": "Bearer",
            "userId": record.get("userId", self._default_user_id),
            "createdAt": now_ms(),
        }
        self._store.set(token_path(access_token), token_record)
        self._store.set(token_path(refresh_token), token_record)
        # Single use is enforced by deletion only; two exchanges racing on the same
        # code can both pass the lookup above.
        self._store.remove(code_path(code))
        logger.info("Issued token pair %s for user %s", _redact(access_token), token_record["userId"])
        return token_record
