from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from chatrelay.backend.response import success_response
from chatrelay.backend.schemas import ApiEnvelope, ChatRequest, ChatResultData, ChatStatusData
from chatrelay.backend.services import chat_service
from chatrelay.backend.transport import CancellationSignal, TransportCancelled
from chatrelay.backend.transport.frames import encode_frame


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _messages(payload: ChatRequest) -> list:
	return [message.model_dump() for message in payload.messages]


@router.get("/status", response_model=ApiEnvelope)
def status(request: Request):
	try:
		data = ChatStatusData.model_validate(chat_service.status())
	except chat_service.ChatServiceError as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail={"code": exc.code, "message": exc.message},
		) from exc
	return success_response(request=request, data=data.model_dump())


@router.post("/respond", response_model=ApiEnvelope)
async def respond(request: Request, payload: ChatRequest):
	try:
		result = await chat_service.respond(
			messages=_messages(payload),
			quality_mode=payload.quality_mode,
			action=payload.action,
		)
	except chat_service.ChatServiceError as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail={"code": exc.code, "message": exc.message},
		) from exc

	return success_response(request=request, data=ChatResultData.model_validate(result).model_dump())


@router.post("/stream")
async def stream(request: Request, payload: ChatRequest):
	signal = CancellationSignal()

	async def generate() -> AsyncIterator[str]:
		try:
			async for event in chat_service.stream_respond(
				messages=_messages(payload),
				quality_mode=payload.quality_mode,
				action=payload.action,
				signal=signal,
			):
				yield encode_frame(str(event.get("event") or "message"), event.get("data") or {})
		except chat_service.ChatServiceError as exc:
			yield encode_frame("error", {"code": exc.code, "message": exc.message})
		except TransportCancelled:
			yield encode_frame("error", {"code": "chat_cancelled", "message": "Generation stopped."})
		except Exception:
			logger.exception("Chat stream failed")
			yield encode_frame("error", {"code": "chat_stream_failed", "message": "Chat stream failed."})
		finally:
			signal.cancel()

	return StreamingResponse(
		generate(),
		media_type="text/event-stream",
		headers={
			"Cache-Control": "no-cache",
			"Connection": "keep-alive",
			"X-Accel-Buffering": "no",
		},
	)
