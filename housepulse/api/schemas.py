from __future__ import annotations

from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from housepulse.service.errors import ValidationError
from housepulse.service.validation import is_valid_home_id


def _require_home_id(home_id: Any) -> str:
    if not is_valid_home_id(home_id):
        raise ValidationError("Invalid home_id format")
    return home_id


class PairHomeRequest(BaseModel):
    home_id: str
    # Format is checked by the pairing service; never echoed or logged
    mcp_api_key: Any = Field(repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PairHomeRequest":
        home_id = payload.get("home_id")
        mcp_api_key = payload.get("mcp_api_key")
        if not home_id or not mcp_api_key:
            raise ValidationError("Missing required fields: home_id, mcp_api_key")
        return cls(home_id=_require_home_id(home_id), mcp_api_key=mcp_api_key)


class PairHomeResponse(BaseModel):
    paired: bool


class SystemCheckRequest(BaseModel):
    home_id: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SystemCheckRequest":
        home_id = payload.get("home_id")
        if not home_id:
            raise ValidationError("Missing required field: home_id")
        return cls(home_id=_require_home_id(home_id))


class SystemCheckResponse(BaseModel):
    ok: bool
    last_data_ts: str
    notes: List[str]


class ChatTurn(BaseModel):
    """One conversation entry; extra client fields (ids, timestamps) are ignored."""

    model_config = ConfigDict(extra="ignore")

    role: str
    content: str


_CHAT_TURNS = TypeAdapter(List[ChatTurn])


class ChatRequest(BaseModel):
    home_id: str
    locale: Optional[str] = None
    messages: List[ChatTurn]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChatRequest":
        home_id = payload.get("home_id")
        messages = payload.get("messages")
        if not home_id or messages is None or not isinstance(messages, list):
            raise ValidationError("Missing required fields: home_id, messages")
        home_id = _require_home_id(home_id)
        try:
            turns = _CHAT_TURNS.validate_python(messages)
        except PydanticValidationError as exc:
            raise ValidationError("Invalid messages format") from exc
        locale = payload.get("locale")
        return cls(
            home_id=home_id,
            locale=locale if isinstance(locale, str) else None,
            messages=turns,
        )


class ToolEventBody(BaseModel):
    tool: str
    status: str


class ChatResponse(BaseModel):
    reply: str
    tool_events: Optional[List[ToolEventBody]] = None


class ErrorBody(BaseModel):
    error: str
