from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from chatrelay.backend.transport import (
	CancellationSignal,
	ChatTransport,
	LocalResponder,
	Message,
	TransportConfigError,
	TransportSettings,
	build_action_prompt,
	load_settings,
)
from chatrelay.backend.transport.remote import RemoteChatClient
from chatrelay.backend.transport.types import coerce_messages


logger = logging.getLogger(__name__)

_RESPONDER = LocalResponder()


class ChatServiceError(Exception):
	def __init__(self, *, status_code: int, code: str, message: str):
		super().__init__(message)
		self.status_code = status_code
		self.code = code
		self.message = message


def _settings() -> TransportSettings:
	try:
		return load_settings()
	except TransportConfigError as exc:
		raise ChatServiceError(
			status_code=503,
			code="chat_transport_unconfigured",
			message=str(exc),
		) from exc


def _build_remote_client(settings: TransportSettings) -> Optional[RemoteChatClient]:
	if not settings.remote_ready:
		return None
	return RemoteChatClient(settings.remote_url)


def build_transport() -> ChatTransport:
	settings = _settings()
	return ChatTransport(settings, responder=_RESPONDER, remote=_build_remote_client(settings))


def status() -> Dict[str, object]:
	settings = _settings()
	warnings: List[str] = []
	if settings.remote_enabled and not settings.remote_url:
		warnings.append("CHAT_REMOTE_URL is not set; smart mode uses local replies.")
	return {
		"remote_url": settings.remote_url or None,
		"remote_enabled": settings.remote_enabled,
		"remote_ready": settings.remote_ready,
		"remote_timeout_s": settings.remote_timeout_s,
		"remote_stream_timeout_s": settings.remote_stream_timeout_s,
		"local_pacing": settings.pacing.smart_thinking_s > 0,
		"topics": [guide.id for guide in _RESPONDER.catalog],
		"warnings": warnings,
	}


def prepare_messages(messages: Iterable[Any], action: Optional[str] = None) -> List[Message]:
	history = coerce_messages(messages)
	if action:
		previous = next((message for message in reversed(history) if message.role == "assistant"), None)
		if previous is None:
			raise ChatServiceError(
				status_code=400,
				code="chat_bad_request",
				message=f"Action '{action}' needs a previous assistant message.",
			)
		history.append(Message(role="user", content=build_action_prompt(action, previous.content)))
	if not any(message.role == "user" and message.content.strip() for message in history):
		raise ChatServiceError(
			status_code=400,
			code="chat_bad_request",
			message="messages must include at least one non-empty user message.",
		)
	return history


async def respond(
	*,
	messages: Iterable[Any],
	quality_mode: bool = True,
	action: Optional[str] = None,
	signal: Optional[CancellationSignal] = None,
) -> Dict[str, Any]:
	history = prepare_messages(messages, action)
	transport = build_transport()
	result = await transport.chat(history, quality_mode=quality_mode, signal=signal)
	return result.as_dict()


async def stream_respond(
	*,
	messages: Iterable[Any],
	quality_mode: bool = True,
	action: Optional[str] = None,
	signal: Optional[CancellationSignal] = None,
) -> AsyncIterator[Dict[str, Any]]:
	history = prepare_messages(messages, action)
	transport = build_transport()
	signal = signal or CancellationSignal()

	yield {
		"event": "meta",
		"data": {
			"qualityMode": quality_mode,
			"remoteAvailable": transport.remote_available,
			"messageCount": len(history),
		},
	}

	queue: asyncio.Queue[str] = asyncio.Queue()
	task = asyncio.create_task(
		transport.chat(history, quality_mode=quality_mode, on_chunk=queue.put_nowait, signal=signal)
	)
	try:
		while not task.done():
			getter = asyncio.ensure_future(queue.get())
			done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
			if getter in done:
				yield {"event": "chunk", "data": {"text": getter.result()}}
			else:
				getter.cancel()
		while not queue.empty():
			yield {"event": "chunk", "data": {"text": queue.get_nowait()}}
		result = task.result()
	finally:
		if not task.done():
			logger.info("Stream consumer went away; cancelling chat request")
			signal.cancel()
			await asyncio.gather(task, return_exceptions=True)

	yield {"event": "done", "data": result.as_dict()}
