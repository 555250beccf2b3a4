from __future__ import annotations

import json
from typing import Any, Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from latch_gateway.deps import get_authorization_service
from latch_gateway.http_errors import GatewayError, InvalidRequest
from latch_gateway.oauth import AuthorizationService
from latch_gateway.security import extract_basic_credentials

router = APIRouter(prefix="/smartthings/oauth", tags=["smartthings-oauth"])


async def _read_token_params(request: Request) -> dict[str, Any]:
    """
    Token requests arrive form-encoded per RFC 6749; JSON bodies are accepted too.
    """
    raw = await request.body()
    if not raw:
        return {}
    content_type = (request.headers.get("content-type") or "").lower()
    if "application/json" in content_type:
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidRequest(f"Invalid JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise InvalidRequest("Token request body must be an object")
        return payload
    try:
        return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
    except UnicodeDecodeError as e:
        raise InvalidRequest(f"Invalid form body: {e}") from e


@router.get("/authorize")
def authorize(
    response_type: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    redirect_uri: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    service: AuthorizationService = Depends(get_authorization_service),
) -> Any:
    """
    Issue an authorization code for the configured default user and send the browser
    back to the platform. There is no login step.
    """
    try:
        location = service.authorize(
            response_type=response_type,
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=state,
        )
    except GatewayError as e:
        # Nothing trustworthy to redirect to yet, answer the browser directly.
        return PlainTextResponse(content=e.description or e.error, status_code=e.status_code)
    return RedirectResponse(url=location, status_code=302)


@router.post("/token")
async def token(
    request: Request,
    service: AuthorizationService = Depends(get_authorization_service),
) -> JSONResponse:
    params = await _read_token_params(request)
    basic_id, basic_secret = extract_basic_credentials(request.headers.get("authorization"))

    def _param(name: str) -> Optional[str]:
        value = params.get(name)
        return str(value) if value is not None else None

    record = await run_in_threadpool(
        lambda: service.exchange_code(
            grant_type=_param("grant_type"),
            code=_param("code"),
            client_id=_param("client_id") or basic_id,
            client_secret=_param("client_secret") or basic_secret,
            redirect_uri=_param("redirect_uri"),
        )
    )
    return JSONResponse(
        content=record,
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )
