from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, List, Literal, Optional, Union

from chatrelay.backend.transport.types import RemoteServiceError, StreamFrame


logger = logging.getLogger(__name__)

TextCallback = Callable[[str], Union[None, Awaitable[None]]]


async def deliver_text(callback: TextCallback, text: str) -> None:
	result = callback(text)
	if inspect.isawaitable(result):
		await result


def encode_frame(event: str, data: Any) -> str:
	payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
	body = "\n".join(f"data: {line}" for line in payload.split("\n"))
	return f"event: {event}\n{body}\n\n"


def _parse_payload(raw: str) -> Any:
	try:
		parsed = json.loads(raw)
	except ValueError:
		return raw
	# bare numbers and literals stay text so "42" streams as "42"
	return parsed if isinstance(parsed, (dict, list, str)) else raw


def decode_frame(block: str) -> Optional[StreamFrame]:
	event: Optional[str] = None
	data_lines: List[str] = []
	for line in block.split("\n"):
		if not line or line.startswith(":"):
			continue
		field_name, _, value = line.partition(":")
		if value.startswith(" "):
			value = value[1:]
		if field_name == "event":
			event = value.strip() or None
		elif field_name == "data":
			data_lines.append(value)
	if event is None and not data_lines:
		return None
	payload = _parse_payload("\n".join(data_lines)) if data_lines else None
	return StreamFrame(event=event or "message", payload=payload)


class FrameDecoder:
	"""Incremental decoder holding the carry-over between fragments of one stream."""

	def __init__(self) -> None:
		self._buffer = ""

	def feed(self, fragment: str) -> List[StreamFrame]:
		self._buffer += fragment.replace("\r", "")
		frames: List[StreamFrame] = []
		while True:
			block, sep, rest = self._buffer.partition("\n\n")
			if not sep:
				break
			self._buffer = rest
			frame = decode_frame(block)
			if frame is not None:
				frames.append(frame)
		return frames

	def flush(self) -> List[StreamFrame]:
		block, self._buffer = self._buffer, ""
		frame = decode_frame(block)
		return [frame] if frame is not None else []


async def iter_frames(fragments: AsyncIterable[Union[str, bytes]]) -> AsyncIterator[StreamFrame]:
	decoder = FrameDecoder()
	async for fragment in fragments:
		if isinstance(fragment, bytes):
			fragment = fragment.decode("utf-8", errors="replace")
		for frame in decoder.feed(fragment):
			yield frame
	for frame in decoder.flush():
		yield frame


def frame_text(payload: Any) -> str:
	if isinstance(payload, str):
		return payload
	if isinstance(payload, dict):
		for key in ("text", "delta", "content"):
			value = payload.get(key)
			if isinstance(value, str):
				return value
	return ""


def _error_message(payload: Any) -> str:
	if isinstance(payload, dict):
		for key in ("message", "error", "detail"):
			value = payload.get(key)
			if isinstance(value, str) and value.strip():
				return value.strip()
	if isinstance(payload, str) and payload.strip():
		return payload.strip()
	return "stream reported an error"


@dataclass
class StreamOutcome:
	text: str
	terminal: Literal["done", "error", "eof"]


def _has_text(parts: List[str]) -> bool:
	return any(part.strip() for part in parts)


def _finish(parts: List[str], terminal: Literal["done", "eof"]) -> StreamOutcome:
	if not _has_text(parts):
		raise RemoteServiceError(code="remote_empty_stream", message="stream ended without a reply")
	return StreamOutcome(text="".join(parts), terminal=terminal)


async def read_reply_stream(
	frames: AsyncIterable[StreamFrame],
	on_text: Optional[TextCallback] = None,
) -> StreamOutcome:
	parts: List[str] = []
	async for frame in frames:
		logger.debug("Stream frame: %s", frame.event)
		if frame.event == "chunk":
			text = frame_text(frame.payload)
			if not text:
				continue
			parts.append(text)
			if on_text is not None:
				await deliver_text(on_text, text)
		elif frame.event == "done":
			return _finish(parts, "done")
		elif frame.event == "error":
			if _has_text(parts):
				logger.warning("Stream error after partial reply: %s", _error_message(frame.payload))
				return StreamOutcome(text="".join(parts), terminal="error")
			raise RemoteServiceError(code="remote_stream_error", message=_error_message(frame.payload))
	return _finish(parts, "eof")
