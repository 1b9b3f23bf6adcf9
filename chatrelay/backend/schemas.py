from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiError(BaseModel):
	model_config = ConfigDict(extra="forbid")

	code: str
	message: str
	evidence: List[str] = Field(default_factory=list)


class ApiEnvelope(BaseModel):
	model_config = ConfigDict(extra="allow")

	ok: bool
	generated_at: str
	request_id: Optional[str] = None
	data: Optional[Dict[str, Any]] = None
	error: Optional[ApiError] = None


class ChatMessageIn(BaseModel):
	model_config = ConfigDict(extra="ignore")

	role: Literal["user", "assistant"]
	content: str = Field(..., max_length=20000)


class ChatRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	messages: List[ChatMessageIn] = Field(..., min_length=1, max_length=200, description="Conversation, oldest first.")
	quality_mode: bool = Field(default=True, description="Smart mode tries the live API before local replies.")
	action: Optional[Literal["deeper", "code", "tldr", "compare"]] = Field(
		default=None,
		description="Quick action applied to the last assistant message.",
	)


class ChatResultMeta(BaseModel):
	model_config = ConfigDict(extra="forbid")

	source: Literal["live", "local_smart", "local_lite"]
	streamed: bool
	qualityMode: bool
	fallbackReason: str = ""
	runtimeMetrics: Dict[str, Any] = Field(default_factory=dict)


class ChatResultData(BaseModel):
	model_config = ConfigDict(extra="forbid")

	reply: str
	meta: ChatResultMeta


class ChatStatusData(BaseModel):
	model_config = ConfigDict(extra="forbid")

	remote_url: Optional[str] = None
	remote_enabled: bool = True
	remote_ready: bool = False
	remote_timeout_s: float
	remote_stream_timeout_s: float
	local_pacing: bool = True
	topics: List[str] = Field(default_factory=list)
	warnings: List[str] = Field(default_factory=list)
