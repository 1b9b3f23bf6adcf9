from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Tuple


Role = Literal["user", "assistant"]
Source = Literal["live", "local_smart", "local_lite"]
AbortReason = Literal["user_cancelled", "timed_out"]
Intent = Literal["how", "why", "debug", "example", "general"]

USER_CANCELLED: AbortReason = "user_cancelled"
TIMED_OUT: AbortReason = "timed_out"


@dataclass(frozen=True)
class Message:
	role: Role
	content: str

	def as_dict(self) -> Dict[str, str]:
		return {"role": self.role, "content": self.content}


def coerce_messages(items: Iterable[Any]) -> List[Message]:
	messages: List[Message] = []
	for item in items:
		if isinstance(item, Message):
			messages.append(item)
			continue
		if isinstance(item, dict):
			role = item.get("role")
			content = item.get("content")
		else:
			role = getattr(item, "role", None)
			content = getattr(item, "content", None)
		if not isinstance(content, str):
			continue
		messages.append(Message(role="user" if role == "user" else "assistant", content=content))
	return messages


@dataclass(frozen=True)
class TopicGuide:
	id: str
	title: str
	triggers: Tuple[str, ...]
	summary: str
	why: Tuple[str, ...]
	steps: Tuple[str, ...]
	mistakes: Tuple[str, ...]
	example_language: str
	example_body: str
	follow_ups: Tuple[str, ...]


@dataclass
class TransportMeta:
	source: Source
	streamed: bool
	quality_mode: bool
	fallback_reason: str = ""
	runtime_metrics: Dict[str, Any] = field(default_factory=dict)

	def as_dict(self) -> Dict[str, Any]:
		return {
			"source": self.source,
			"streamed": self.streamed,
			"qualityMode": self.quality_mode,
			"fallbackReason": self.fallback_reason,
			"runtimeMetrics": dict(self.runtime_metrics),
		}


@dataclass
class TransportResult:
	reply: str
	meta: TransportMeta

	def as_dict(self) -> Dict[str, Any]:
		return {"reply": self.reply, "meta": self.meta.as_dict()}


@dataclass(frozen=True)
class StreamFrame:
	event: str
	payload: Any = None


class TransportCancelled(Exception):
	"""Raised when the caller stops a request; never converted into a fallback."""

	def __init__(self, reason: AbortReason = USER_CANCELLED):
		super().__init__("Chat request was cancelled.")
		self.reason = reason


class RemoteServiceError(Exception):
	def __init__(self, *, code: str, message: str):
		super().__init__(message)
		self.code = code
		self.message = message


class RemoteTimeout(RemoteServiceError):
	def __init__(self, *, timeout_s: float):
		super().__init__(code="remote_timeout", message=f"Live API timed out after {timeout_s:g}s.")
		self.timeout_s = timeout_s


class TransportConfigError(Exception):
	pass
