from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool

from housepulse.api.schemas import (
    ChatRequest,
    ChatResponse,
    PairHomeRequest,
    PairHomeResponse,
    SystemCheckRequest,
    SystemCheckResponse,
    ToolEventBody,
)
from housepulse.logging import get_logger
from housepulse.service.auth import AuthContext
from housepulse.service.errors import ValidationError
from housepulse.service.runtime import Runtime, get_runtime
from housepulse.service.status import format_timestamp

logger = get_logger(__name__)

router = APIRouter()


def runtime_dependency(request: Request) -> Runtime:
    """Runtime attached to the app, falling back to the process singleton."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None:
        return runtime
    return get_runtime()


async def get_user(
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(runtime_dependency),
) -> AuthContext:
    return await runtime.auth.authenticate(authorization)


async def _read_json_payload(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    # Arrays and scalars carry no fields; the per-route checks report what is missing
    if not isinstance(payload, dict):
        return {}
    return payload


@router.post("/pair_home")
async def pair_home(
    request: Request,
    principal: AuthContext = Depends(get_user),
    runtime: Runtime = Depends(runtime_dependency),
):
    body = PairHomeRequest.from_payload(await _read_json_payload(request))
    await run_in_threadpool(
        runtime.pairing.upsert_pairing,
        body.home_id,
        principal.user_id,
        body.mcp_api_key,
    )
    return PairHomeResponse(paired=True).model_dump()


@router.post("/system_check")
async def system_check(
    request: Request,
    principal: AuthContext = Depends(get_user),
    runtime: Runtime = Depends(runtime_dependency),
):
    body = SystemCheckRequest.from_payload(await _read_json_payload(request))
    report = await run_in_threadpool(runtime.status.check, principal.user_id, body.home_id)
    return SystemCheckResponse(
        ok=report.ok,
        last_data_ts=format_timestamp(report.last_data_ts),
        notes=report.notes,
    ).model_dump()


@router.post("/chat")
async def chat(
    request: Request,
    principal: AuthContext = Depends(get_user),
    runtime: Runtime = Depends(runtime_dependency),
):
    body = ChatRequest.from_payload(await _read_json_payload(request))
    routed = await run_in_threadpool(
        runtime.chat.relay,
        principal.user_id,
        body.home_id,
        body.messages,
        body.locale,
    )
    tool_events = [
        ToolEventBody(tool=event.tool, status=event.status) for event in routed.tool_events
    ]
    response = ChatResponse(reply=routed.reply, tool_events=tool_events or None)
    return response.model_dump(exclude_none=True)
