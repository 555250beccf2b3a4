from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from latch_gateway.deps import get_schema_connector
from latch_gateway.http_errors import InvalidRequest
from latch_gateway.schema_connector import SchemaConnector
from latch_gateway.security import require_token

router = APIRouter(tags=["smartthings-schema"])


@router.post("/smartthings", dependencies=[Depends(require_token)])
async def smartthings_interaction(
    request: Request,
    connector: SchemaConnector = Depends(get_schema_connector),
) -> Dict[str, Any]:
    """
    SmartThings Schema connector endpoint (discovery, state refresh, commands).

    The body is read here rather than declared as a parameter so the bearer token is
    checked before the body is parsed or the device node is touched.
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise InvalidRequest(f"Invalid JSON body: {e}") from e
    return await run_in_threadpool(connector.handle, body)
