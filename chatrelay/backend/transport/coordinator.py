from __future__ import annotations

import logging
import random
import time
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from chatrelay.backend import constants
from chatrelay.backend.transport.cancellation import CancellationSignal, TimeoutSupervisor
from chatrelay.backend.transport.config import TransportSettings
from chatrelay.backend.transport.demo_detector import is_demo_reply
from chatrelay.backend.transport.frames import TextCallback, deliver_text
from chatrelay.backend.transport.generator import LocalResponder
from chatrelay.backend.transport.remote import RemoteChatClient
from chatrelay.backend.transport.simulator import stream_text
from chatrelay.backend.transport.types import (
	Message,
	RemoteServiceError,
	RemoteTimeout,
	Source,
	TransportMeta,
	TransportResult,
	coerce_messages,
)


logger = logging.getLogger(__name__)

REASON_UNCONFIGURED = "Live API is not configured; using local smart replies."
REASON_DEMO = "Live API is running in demo mode (no API key); using local smart replies."
REASON_TRUNCATED = "Live stream ended early; reply may be truncated."


def fallback_reason(exc: RemoteServiceError) -> str:
	if isinstance(exc, RemoteTimeout):
		return f"Live API timed out after {exc.timeout_s:g}s; using local smart replies."
	if exc.code == "remote_demo_mode":
		return REASON_DEMO
	return f"Live API request failed ({exc.message}); using local smart replies."


def latest_user_text(messages: Sequence[Message]) -> str:
	for message in reversed(messages):
		if message.role == "user":
			return message.content
	return ""


def _demo_error() -> RemoteServiceError:
	return RemoteServiceError(code="remote_demo_mode", message="placeholder reply")


class _Telemetry:
	def __init__(self) -> None:
		self.started = time.perf_counter()
		self.first_chunk_at: Optional[float] = None
		self.chunks = 0
		self.remote_attempted = False

	def wrap(self, on_chunk: TextCallback) -> TextCallback:
		async def counted(text: str) -> None:
			if self.first_chunk_at is None:
				self.first_chunk_at = time.perf_counter()
			self.chunks += 1
			await deliver_text(on_chunk, text)

		return counted

	def snapshot(self, reply: str) -> dict:
		finished = time.perf_counter()
		chars = len(reply)
		return {
			"duration_ms": int((finished - self.started) * 1000),
			"first_chunk_ms": int((self.first_chunk_at - self.started) * 1000) if self.first_chunk_at is not None else None,
			"chunks": self.chunks,
			"chars": chars,
			"tokens": max(1, round(chars / 4)),
			"remote_attempted": self.remote_attempted,
		}


class _HeldStream:
	"""Holds the first part of a live stream until the placeholder check is decided."""

	def __init__(self, on_chunk: TextCallback, threshold: int = constants.DEMO_CHECK_CHARS):
		self._on_chunk = on_chunk
		self._threshold = threshold
		self._parts: List[str] = []
		self._held: List[str] = []
		self.forwarded = False

	@property
	def text(self) -> str:
		return "".join(self._parts)

	async def push(self, text: str) -> None:
		self._parts.append(text)
		if self.forwarded:
			await self._on_chunk(text)
			return
		self._held.append(text)
		combined = self.text
		if is_demo_reply(combined):
			raise _demo_error()
		if len(combined) >= self._threshold and combined.strip():
			await self._release()

	async def finish(self) -> None:
		if self.forwarded:
			return
		if is_demo_reply(self.text):
			raise _demo_error()
		await self._release()

	async def _release(self) -> None:
		held, self._held = "".join(self._held), []
		self.forwarded = True
		if held:
			await self._on_chunk(held)


class ChatTransport:
	"""Turns a message history into one reply, live when possible and local otherwise.

	Only ``TransportCancelled`` escapes ``chat``; every remote failure is logged
	and turned into a local reply whose ``meta.fallback_reason`` says why.
	"""

	def __init__(
		self,
		settings: Optional[TransportSettings] = None,
		*,
		responder: Optional[LocalResponder] = None,
		remote: Optional[RemoteChatClient] = None,
		rng: Optional[random.Random] = None,
	):
		self._settings = settings or TransportSettings()
		self._responder = responder or LocalResponder()
		if remote is None and self._settings.remote_ready:
			remote = RemoteChatClient(self._settings.remote_url)
		self._remote = remote if self._settings.remote_enabled else None
		self._rng = rng or random.Random()

	@property
	def settings(self) -> TransportSettings:
		return self._settings

	@property
	def remote_available(self) -> bool:
		return self._remote is not None

	async def chat(
		self,
		messages: Iterable[Any],
		*,
		quality_mode: bool = True,
		on_chunk: Optional[TextCallback] = None,
		signal: Optional[CancellationSignal] = None,
	) -> TransportResult:
		signal = signal or CancellationSignal()
		signal.raise_if_cancelled()
		telemetry = _Telemetry()
		history = coerce_messages(messages)
		callback = telemetry.wrap(on_chunk) if on_chunk is not None else None

		reason = ""
		if quality_mode:
			if self._remote is None:
				reason = REASON_UNCONFIGURED
			else:
				telemetry.remote_attempted = True
				try:
					reply, note = await self._attempt_remote(history, callback, signal)
				except RemoteServiceError as exc:
					signal.raise_if_cancelled()
					reason = fallback_reason(exc)
					logger.warning("Live API attempt failed (%s): %s", exc.code, exc.message)
				else:
					logger.info("Live API reply accepted (%d chars)", len(reply))
					return self._result(reply, "live", callback is not None, True, note, telemetry)

		signal.raise_if_cancelled()
		text = latest_user_text(history)
		reply = self._responder.respond(text, history, quality_mode)
		source: Source = "local_smart" if quality_mode else "local_lite"
		pacing = self._settings.pacing
		if callback is not None:
			await stream_text(
				reply,
				callback,
				signal=signal,
				quality_mode=quality_mode,
				pacing=pacing,
				rng=self._rng,
			)
		else:
			low, high = pacing.latency_range(quality_mode)
			await signal.sleep(self._rng.uniform(low, high))
		logger.info("Local %s reply generated (%d chars)", source, len(reply))
		return self._result(reply, source, callback is not None, quality_mode, reason, telemetry)

	async def _attempt_remote(
		self,
		history: List[Message],
		callback: Optional[TextCallback],
		signal: CancellationSignal,
	) -> Tuple[str, str]:
		assert self._remote is not None
		if callback is None:
			async with TimeoutSupervisor(signal, self._settings.remote_timeout_s) as supervisor:
				reply = await self._remote.fetch_reply(history, quality_mode=True, supervisor=supervisor)
			if is_demo_reply(reply):
				raise _demo_error()
			return reply.strip(), ""

		held = _HeldStream(callback)
		try:
			async with TimeoutSupervisor(signal, self._settings.remote_stream_timeout_s) as supervisor:
				outcome = await self._remote.stream_reply(
					history,
					quality_mode=True,
					supervisor=supervisor,
					on_text=held.push,
				)
		except RemoteServiceError as exc:
			signal.raise_if_cancelled()
			if held.forwarded and held.text.strip():
				logger.warning("Live stream broke after partial delivery (%s)", exc.code)
				return held.text, REASON_TRUNCATED
			raise
		await held.finish()
		note = "" if outcome.terminal == "done" else REASON_TRUNCATED
		return outcome.text, note

	def _result(
		self,
		reply: str,
		source: Source,
		streamed: bool,
		quality_mode: bool,
		reason: str,
		telemetry: _Telemetry,
	) -> TransportResult:
		metrics = telemetry.snapshot(reply)
		return TransportResult(
			reply=reply,
			meta=TransportMeta(
				source=source,
				streamed=streamed and telemetry.chunks > 0,
				quality_mode=quality_mode,
				fallback_reason=reason,
				runtime_metrics=metrics,
			),
		)


async def chat(
	messages: Iterable[Any],
	*,
	quality_mode: bool = True,
	on_chunk: Optional[TextCallback] = None,
	signal: Optional[CancellationSignal] = None,
	transport: Optional[ChatTransport] = None,
) -> TransportResult:
	transport = transport or ChatTransport()
	return await transport.chat(messages, quality_mode=quality_mode, on_chunk=on_chunk, signal=signal)
