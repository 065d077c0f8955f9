from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from itertools import chain
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from lostfound.backend.response import success_response
from lostfound.backend.schemas import ApiEnvelope, ChatRequest
from lostfound.backend.services import assistant_service
from lostfound.backend.services.assistant_providers import AssistantServiceError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

_STREAM_HEADERS = {
	"Cache-Control": "no-cache",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
}
_BROKEN_STREAM_TEXT = "\n\nSorry, something went wrong while answering. Please send your message again."


def _encode_sse(event: str, data: dict) -> str:
	payload = json.dumps(data, ensure_ascii=False)
	return f"event: {event}\ndata: {payload}\n\n"


def _start_turn(payload: ChatRequest) -> Iterator[Dict[str, Any]]:
	"""Run the turn up to its first event so start-up failures become HTTP errors."""
	messages = [message.model_dump() for message in payload.messages]
	try:
		events = assistant_service.stream_chat(messages)
		first = next(events, None)
	except AssistantServiceError as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail={"code": exc.code, "message": exc.message},
		) from exc
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	if first is None:
		return iter(())
	return chain([first], events)


@router.post("")
def chat(payload: ChatRequest):
	events = _start_turn(payload)

	def generate() -> Iterator[str]:
		try:
			for event in events:
				if event.get("event") == "delta":
					yield event["data"]["text"]
		except Exception:
			logger.exception("Chat stream failed")
			yield _BROKEN_STREAM_TEXT

	return StreamingResponse(
		generate(),
		media_type="text/plain; charset=utf-8",
		headers=_STREAM_HEADERS,
	)


@router.post("/events")
def chat_events(payload: ChatRequest):
	events = _start_turn(payload)

	def generate() -> Iterator[str]:
		try:
			for event in events:
				event_name = str(event.get("event") or "message")
				data = event.get("data")
				if not isinstance(data, dict):
					data = {"value": data}
				yield _encode_sse(event_name, data)
		except Exception:
			logger.exception("Chat event stream failed")
			yield _encode_sse(
				"error",
				{"code": "assistant_provider_error", "message": "Assistant stream failed."},
			)

	return StreamingResponse(
		generate(),
		media_type="text/event-stream",
		headers=_STREAM_HEADERS,
	)


@router.get("/provider", response_model=ApiEnvelope)
def provider(request: Request):
	try:
		info = assistant_service.provider_info()
	except AssistantServiceError as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail={"code": exc.code, "message": exc.message},
		) from exc
	return success_response(request=request, data=info)
