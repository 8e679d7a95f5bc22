from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from schemas.commands import ExecutionPlan, ParsedPositionAction
from schemas.portfolio import CamelModel


class ChatTurn(CamelModel):
    role: Literal["user", "assistant"]
    content: str = Field(max_length=8000)


class CommandRequest(CamelModel):
    text: str = Field(min_length=1, max_length=2000)
    ollama_url: Optional[str] = Field(default=None, max_length=256)
    ollama_model: Optional[str] = Field(default=None, max_length=128)
    history: List[ChatTurn] = Field(default_factory=list, max_length=20)

    @field_validator("text")
    @classmethod
    def _strip_text(cls, v: str) -> str:
        out = (v or "").strip()
        if not out:
            raise ValueError("text must not be blank")
        return out


class ToolCallLog(CamelModel):
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    is_mutation: bool = False


class CommandResponse(CamelModel):
    response: str = ""
    tool_calls: List[ToolCallLog] = Field(default_factory=list)
    mutations: bool = False
    pending_action: Optional[ParsedPositionAction] = None
    plan: Optional[ExecutionPlan] = None


class ConfirmRequest(CamelModel):
    tool: str = Field(min_length=1, max_length=64)
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ConfirmResponse(CamelModel):
    ok: bool
    result: Dict[str, Any] = Field(default_factory=dict)
