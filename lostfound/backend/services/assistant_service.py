from __future__ import annotations

import logging
import os
import time
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional

from lostfound.backend import constants
from lostfound.backend.services import assistant_tools, redirect_protocol
from lostfound.backend.services.assistant_providers import (
	AssistantServiceError,
	LocalChatModel,
	OpenAIChatModel,
	ToolCallRequest,
	build_openai_client,
)


logger = logging.getLogger(__name__)

ProviderMode = Literal["auto", "openai", "local"]

_DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
_DEFAULT_TURN_TIMEOUT_S = 30.0
_DEFAULT_MAX_STEPS = 5

_EMPTY_REPLY = "Sorry, I couldn't come up with an answer to that. Could you rephrase your question?"
_PROVIDER_FAILURE_REPLY = "Sorry, I ran into a problem while answering. Please send your message again."
_TIMEOUT_REPLY = "Sorry, that took too long to answer. Please try again."


def _route_lines() -> str:
	return "\n".join(f'   - "{path}" ({label})' for path, label in constants.NAVIGATION_ROUTES.items())


SYSTEM_PROMPT = f"""
You are a helpful assistant for the University Lost & Found Portal.
You are talking to a simplified text-only client.

1. Transparency:
   - Before you search, you MUST say "Searching for [item]..." first.
   - If the search tool returns "Found 0 items", you MUST say: "I checked the database, but I couldn't find any [item] reported as lost/found." Never make up items.
   - If the search tool returns an error, tell the user the search failed and suggest trying again.
2. Navigation: to move the user to a page, output the tag "__REDIRECT:/path__" in your reply.
   - Example: "Sure! I'll take you there. __REDIRECT:/report/lost__"
   - Valid paths (ONLY use these):
{_route_lines()}
3. Always output text. NEVER return an empty response; describe what you are doing.

Always be polite and concise.
""".strip()


class _TurnTimeout(Exception):
	pass


@dataclass
class _TurnState:
	parts: List[str] = field(default_factory=list)
	steps: int = 0
	redirect: Optional[str] = None
	navigate_to: Optional[str] = None
	truncated: bool = False

	@property
	def text(self) -> str:
		return "".join(self.parts)


def _provider_mode() -> ProviderMode:
	mode = os.getenv("ASSISTANT_PROVIDER_MODE", "auto").strip().lower() or "auto"
	if mode not in {"auto", "openai", "local"}:
		raise AssistantServiceError(
			status_code=503,
			code="assistant_provider_unconfigured",
			message="ASSISTANT_PROVIDER_MODE must be one of: auto, openai, local.",
		)
	return mode  # type: ignore[return-value]


def _resolved_provider_mode(configured_mode: ProviderMode) -> ProviderMode:
	if configured_mode in {"local", "openai"}:
		return configured_mode
	has_openai_key = bool(os.getenv("OPENAI_API_KEY", "").strip())
	return "openai" if has_openai_key else "local"


def _positive_env(name: str, default: float) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError as exc:
		raise AssistantServiceError(
			status_code=503,
			code="assistant_provider_unconfigured",
			message=f"{name} must be numeric.",
		) from exc
	if value <= 0:
		raise AssistantServiceError(
			status_code=503,
			code="assistant_provider_unconfigured",
			message=f"{name} must be greater than zero.",
		)
	return value


def turn_timeout() -> float:
	return _positive_env("ASSISTANT_TURN_TIMEOUT_S", _DEFAULT_TURN_TIMEOUT_S)


def max_steps() -> int:
	return int(_positive_env("ASSISTANT_MAX_STEPS", _DEFAULT_MAX_STEPS))


def _openai_model() -> str:
	return os.getenv("ASSISTANT_OPENAI_MODEL", _DEFAULT_OPENAI_MODEL).strip() or _DEFAULT_OPENAI_MODEL


def _openai_base_url() -> Optional[str]:
	return os.getenv("ASSISTANT_OPENAI_BASE_URL", "").strip() or None


def _openai_api_key() -> str:
	key = os.getenv("OPENAI_API_KEY", "").strip()
	if not key:
		raise AssistantServiceError(
			status_code=503,
			code="assistant_provider_unconfigured",
			message="OpenAI API key not configured. Set OPENAI_API_KEY.",
		)
	return key


def build_model():
	mode = _resolved_provider_mode(_provider_mode())
	if mode == "local":
		return LocalChatModel()
	client = build_openai_client(
		api_key=_openai_api_key(),
		timeout_s=turn_timeout(),
		base_url=_openai_base_url(),
	)
	return OpenAIChatModel(client=client, model=_openai_model())


def provider_info() -> Dict[str, object]:
	configured_mode = _provider_mode()
	effective_mode = _resolved_provider_mode(configured_mode)
	warnings: List[str] = []
	if effective_mode == "openai" and not os.getenv("OPENAI_API_KEY", "").strip():
		warnings.append("OpenAI API key not configured. Set OPENAI_API_KEY.")
	return {
		"provider_mode": configured_mode,
		"effective_provider_mode": effective_mode,
		"model": _openai_model() if effective_mode == "openai" else LocalChatModel.model,
		"provider_ready": not warnings,
		"provider_warnings": warnings,
		"max_steps": max_steps(),
		"turn_timeout_s": turn_timeout(),
		"navigation_routes": list(redirect_protocol.ALLOWED_PATHS),
	}


def _remaining(deadline: float) -> float:
	remaining = deadline - time.monotonic()
	if remaining <= 0:
		raise _TurnTimeout()
	return remaining


def _text_events(state: _TurnState, text: str) -> List[Dict[str, Any]]:
	state.parts.append(text)
	events: List[Dict[str, Any]] = [{"event": "delta", "data": {"text": text}}]
	if state.redirect is None:
		path = redirect_protocol.find_redirect(state.text)
		if path is not None:
			state.redirect = path
			events.append({"event": "navigate", "data": {"path": path}})
	return events


def _assistant_tool_message(text: str, calls: List[ToolCallRequest]) -> Dict[str, Any]:
	return {
		"role": "assistant",
		"content": text or None,
		"tool_calls": [
			{
				"id": call.call_id,
				"type": "function",
				"function": {"name": call.name, "arguments": call.arguments or "{}"},
			}
			for call in calls
		],
	}


def _execute_tool(request: ToolCallRequest, state: _TurnState) -> str:
	try:
		call = assistant_tools.parse_tool_call(
			name=request.name,
			arguments=request.arguments,
			call_id=request.call_id,
		)
	except assistant_tools.ToolCallError as exc:
		logger.warning("Rejected tool call %s: %s", request.name, exc)
		return f"Error: {exc}"
	target = assistant_tools.navigation_target(call)
	if target is not None:
		state.navigate_to = target
	return assistant_tools.execute_tool(call)


def _run_turn(
	model: Any,
	*,
	messages: List[Dict[str, str]],
	step_budget: int,
	timeout_s: float,
) -> Iterator[Dict[str, Any]]:
	deadline = time.monotonic() + timeout_s
	conversation: List[Dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
	conversation.extend({"role": m["role"], "content": m["content"]} for m in messages)
	state = _TurnState()
	streamed = False

	try:
		for step in range(1, step_budget + 1):
			state.steps = step
			calls: List[ToolCallRequest] = []
			step_text: List[str] = []
			with closing(model.stream_step(conversation, timeout=_remaining(deadline))) as events:
				for event in events:
					if isinstance(event, ToolCallRequest):
						calls.append(event)
						continue
					if not event.text:
						continue
					step_text.append(event.text)
					streamed = True
					yield from _text_events(state, event.text)
					_remaining(deadline)
			if not calls:
				break
			conversation.append(_assistant_tool_message("".join(step_text), calls))
			for request in calls:
				conversation.append(
					{
						"role": "tool",
						"tool_call_id": request.call_id,
						"content": _execute_tool(request, state),
					}
				)
			_remaining(deadline)
		else:
			state.truncated = True
			logger.info("Step budget of %d exhausted; ending turn", step_budget)
	except _TurnTimeout:
		state.truncated = True
		logger.warning("Chat turn exceeded %.1fs; aborting", timeout_s)
		yield {"event": "error", "data": {"code": "assistant_turn_timeout", "message": _TIMEOUT_REPLY}}
		if not redirect_protocol.display_text(state.text):
			yield from _text_events(state, _TIMEOUT_REPLY)
	except AssistantServiceError as exc:
		if not streamed:
			raise
		logger.error("Assistant provider failed mid-turn: %s", exc.message)
		yield {"event": "error", "data": {"code": exc.code, "message": exc.message}}
		yield from _text_events(state, f"\n\n{_PROVIDER_FAILURE_REPLY}")

	if not redirect_protocol.display_text(state.text):
		if state.navigate_to is not None:
			label = constants.NAVIGATION_ROUTES[state.navigate_to]
			yield from _text_events(state, f"Taking you to {label}.")
		else:
			logger.warning("Model produced no visible text; sending fallback reply")
			yield from _text_events(state, _EMPTY_REPLY)

	if state.navigate_to is not None and state.redirect is None:
		yield from _text_events(state, f" {redirect_protocol.redirect_tag(state.navigate_to)}")

	logger.info(
		"Chat turn done: steps=%d chars=%d redirect=%s truncated=%s",
		state.steps,
		len(state.text),
		state.redirect,
		state.truncated,
	)
	yield {
		"event": "done",
		"data": {
			"text": state.text,
			"display_text": redirect_protocol.display_text(state.text),
			"steps": state.steps,
			"redirect": state.redirect,
			"truncated": state.truncated,
			"provider_mode": model.name,
			"model": model.model,
		},
	}


def stream_chat(messages: List[Dict[str, str]]) -> Iterator[Dict[str, Any]]:
	"""Start one assistant turn for ``messages`` and return its event stream.

	Configuration problems raise ``AssistantServiceError`` here, before any
	event exists, so callers can still answer with a plain HTTP error. The
	returned iterator yields ``delta``, ``navigate``, ``error`` and a final
	``done`` event.
	"""
	if not messages:
		raise ValueError("messages must not be empty.")
	for message in messages:
		if message.get("role") not in {"user", "assistant"}:
			raise ValueError("message role must be 'user' or 'assistant'.")
		if not str(message.get("content") or "").strip():
			raise ValueError("message content must not be empty.")
	model = build_model()
	return _run_turn(
		model,
		messages=messages,
		step_budget=max_steps(),
		timeout_s=turn_timeout(),
	)
