from __future__ import annotations

import json
import logging
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx

from chatrelay.backend.transport.cancellation import TimeoutSupervisor
from chatrelay.backend.transport.demo_detector import is_demo_payload
from chatrelay.backend.transport.frames import StreamOutcome, TextCallback, deliver_text, iter_frames, read_reply_stream
from chatrelay.backend.transport.types import Message, RemoteServiceError, TransportCancelled


logger = logging.getLogger(__name__)

_DEMO_MESSAGE = "remote service is in demo mode"


def _request_body(messages: Sequence[Message], *, stream: bool, quality_mode: bool) -> Dict[str, Any]:
	return {
		"messages": [message.as_dict() for message in messages],
		"stream": stream,
		"qualityMode": quality_mode,
	}


def _network_error(exc: Exception) -> RemoteServiceError:
	return RemoteServiceError(code="remote_network_error", message=f"network error: {exc.__class__.__name__}")


def _status_error(status_code: int) -> RemoteServiceError:
	return RemoteServiceError(code="remote_http_error", message=f"HTTP {status_code}")


def _reply_from_payload(payload: Any) -> str:
	if not isinstance(payload, dict):
		raise RemoteServiceError(code="remote_bad_payload", message="unexpected payload shape")
	if is_demo_payload(payload):
		raise RemoteServiceError(code="remote_demo_mode", message=_DEMO_MESSAGE)
	reply = payload.get("reply")
	if not isinstance(reply, str) or not reply.strip():
		raise RemoteServiceError(code="remote_empty_reply", message="empty reply")
	return reply


def _parse_json(raw: bytes) -> Any:
	try:
		return json.loads(raw)
	except ValueError as exc:
		raise RemoteServiceError(code="remote_bad_payload", message="invalid JSON") from exc


async def _supervised_fragments(source: AsyncIterator[str], supervisor: TimeoutSupervisor) -> AsyncIterator[str]:
	iterator = source.__aiter__()
	while True:
		try:
			fragment = await supervisor.run(iterator.__anext__())
		except StopAsyncIteration:
			return
		yield fragment


class RemoteChatClient:
	"""Client side of the upstream chat endpoint: JSON replies or framed text streams.

	Timing is owned by the caller's ``TimeoutSupervisor``; the HTTP client itself
	runs without a timeout so there is exactly one deadline per attempt.
	"""

	def __init__(self, url: str, *, client: Optional[httpx.AsyncClient] = None, headers: Optional[Dict[str, str]] = None):
		self.url = url
		self._client = client
		self._headers = dict(headers or {})

	@asynccontextmanager
	async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
		if self._client is not None:
			yield self._client
			return
		async with httpx.AsyncClient(timeout=None) as client:
			yield client

	async def fetch_reply(
		self,
		messages: Sequence[Message],
		*,
		quality_mode: bool,
		supervisor: TimeoutSupervisor,
	) -> str:
		body = _request_body(messages, stream=False, quality_mode=quality_mode)
		async with self._client_scope() as client:
			try:
				response = await supervisor.run(client.post(self.url, json=body, headers=self._headers))
			except (TransportCancelled, RemoteServiceError):
				raise
			except (httpx.HTTPError, httpx.InvalidURL) as exc:
				raise _network_error(exc) from exc
		if response.status_code >= 400:
			raise _status_error(response.status_code)
		return _reply_from_payload(_parse_json(response.content))

	async def stream_reply(
		self,
		messages: Sequence[Message],
		*,
		quality_mode: bool,
		supervisor: TimeoutSupervisor,
		on_text: Optional[TextCallback] = None,
	) -> StreamOutcome:
		body = _request_body(messages, stream=True, quality_mode=quality_mode)
		headers = {"Accept": "text/event-stream", **self._headers}
		async with self._client_scope() as client:
			request = client.build_request("POST", self.url, json=body, headers=headers)
			try:
				response = await supervisor.run(client.send(request, stream=True))
			except (TransportCancelled, RemoteServiceError):
				raise
			except (httpx.HTTPError, httpx.InvalidURL) as exc:
				raise _network_error(exc) from exc
			try:
				return await self._read_stream(response, supervisor, on_text)
			except (TransportCancelled, RemoteServiceError):
				raise
			except (httpx.HTTPError, httpx.InvalidURL) as exc:
				raise _network_error(exc) from exc
			finally:
				await response.aclose()

	async def _read_stream(
		self,
		response: httpx.Response,
		supervisor: TimeoutSupervisor,
		on_text: Optional[TextCallback],
	) -> StreamOutcome:
		if response.status_code >= 400:
			raise _status_error(response.status_code)
		content_type = response.headers.get("content-type", "")
		if "text/event-stream" not in content_type:
			# upstream ignored the stream flag and answered with a plain JSON body
			logger.info("Upstream answered a stream request with %s", content_type or "no content type")
			raw = await supervisor.run(response.aread())
			reply = _reply_from_payload(_parse_json(raw))
			if on_text is not None:
				await deliver_text(on_text, reply)
			return StreamOutcome(text=reply, terminal="done")
		async with aclosing(_supervised_fragments(response.aiter_text(), supervisor)) as fragments:
			async with aclosing(iter_frames(fragments)) as frames:
				return await read_reply_stream(frames, on_text)
