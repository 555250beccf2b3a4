from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional


@dataclass(frozen=True)
class UpstreamHTTPError(Exception):
    status_code: int
    message: str
    details: Optional[Any] = None


@dataclass
class StoreUnavailableError(Exception):
    """The state store could not complete an operation. The request fails as a whole."""

    message: str
    details: Optional[Any] = None


class GatewayError(Exception):
    """
    Base for errors rendered as {"error": <code>, "error_description": <text>}.

    Subclasses pin the HTTP status and the OAuth-style error code.
    The authorize route renders its own errors as text/plain.
    """

    status_code: ClassVar[int] = 400
    error: ClassVar[str] = "invalid_request"
    www_authenticate: ClassVar[Optional[str]] = None

    def __init__(self, description: str = "") -> None:
        super().__init__(description or self.error)
        self.description = description

    def headers(self) -> Optional[Dict[str, str]]:
        if self.www_authenticate:
            return {"WWW-Authenticate": self.www_authenticate}
        return None

    def body(self) -> Dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class InvalidRequest(GatewayError):
    error = "invalid_request"


class MissingParameter(GatewayError):
    error = "missing_parameter"


class UnsupportedGrantType(GatewayError):
    error = "unsupported_grant_type"


class InvalidClient(GatewayError):
    status_code = 401
    error = "invalid_client"
    www_authenticate = "Basic"


class InvalidGrant(GatewayError):
    error = "invalid_grant"


class RedirectMismatch(GatewayError):
    error = "redirect_uri_mismatch"


class Unauthorized(GatewayError):
    status_code = 401
    error = "unauthorized"
    www_authenticate = "Bearer"


class UnsupportedInteraction(GatewayError):
    error = "unsupported_interaction"
