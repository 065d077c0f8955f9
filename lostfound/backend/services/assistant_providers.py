from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Union

from lostfound.backend import constants
from lostfound.backend.services import assistant_tools, redirect_protocol


logger = logging.getLogger(__name__)

_DEFAULT_STREAM_CHUNK_CHARS = 24


class AssistantServiceError(Exception):
	def __init__(self, *, status_code: int, code: str, message: str):
		super().__init__(message)
		self.status_code = status_code
		self.code = code
		self.message = message


@dataclass(frozen=True)
class TextDelta:
	text: str


@dataclass(frozen=True)
class ToolCallRequest:
	call_id: str
	name: str
	arguments: str


ModelEvent = Union[TextDelta, ToolCallRequest]


def _chunk_text(text: str, size: int = _DEFAULT_STREAM_CHUNK_CHARS) -> List[str]:
	if not text:
		return []
	return [text[i : i + size] for i in range(0, len(text), size)]


def _openai_error(exc: Exception) -> AssistantServiceError:
	name = exc.__class__.__name__
	logger.warning("Assistant provider call failed: %s: %s", name, exc)
	if isinstance(exc, TimeoutError) or name == "APITimeoutError":
		return AssistantServiceError(
			status_code=504,
			code="assistant_provider_timeout",
			message="Assistant provider timed out.",
		)
	return AssistantServiceError(
		status_code=502,
		code="assistant_provider_error",
		message="Assistant provider request failed.",
	)


def build_openai_client(*, api_key: str, timeout_s: float, base_url: Optional[str] = None):
	try:
		from openai import OpenAI
	except ImportError as exc:
		raise AssistantServiceError(
			status_code=503,
			code="assistant_provider_unconfigured",
			message="OpenAI SDK not installed. Add 'openai' dependency.",
		) from exc
	if base_url:
		return OpenAI(api_key=api_key, timeout=timeout_s, base_url=base_url)
	return OpenAI(api_key=api_key, timeout=timeout_s)


class OpenAIChatModel:
	"""Chat-completions model that streams text and function calls for one step."""

	name = "openai"

	def __init__(self, *, client: Any, model: str):
		self._client = client
		self.model = model

	def stream_step(self, messages: List[Dict[str, Any]], *, timeout: float) -> Iterator[ModelEvent]:
		try:
			stream = self._client.chat.completions.create(
				model=self.model,
				messages=messages,
				tools=assistant_tools.TOOL_SCHEMAS,
				stream=True,
				timeout=timeout,
			)
		except Exception as exc:
			raise _openai_error(exc) from exc

		pending: Dict[int, Dict[str, str]] = {}
		try:
			for chunk in stream:
				for choice in getattr(chunk, "choices", None) or []:
					delta = getattr(choice, "delta", None)
					if delta is None:
						continue
					content = getattr(delta, "content", None)
					if isinstance(content, str) and content:
						yield TextDelta(content)
					for fragment in getattr(delta, "tool_calls", None) or []:
						index = getattr(fragment, "index", 0) or 0
						slot = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
						if getattr(fragment, "id", None):
							slot["id"] = fragment.id
						function = getattr(fragment, "function", None)
						if function is None:
							continue
						if getattr(function, "name", None):
							slot["name"] = function.name
						if getattr(function, "arguments", None):
							slot["arguments"] += function.arguments
		except Exception as exc:
			raise _openai_error(exc) from exc
		finally:
			close = getattr(stream, "close", None)
			if callable(close):
				close()

		for index in sorted(pending):
			slot = pending[index]
			yield ToolCallRequest(
				call_id=slot["id"] or f"call_{index}",
				name=slot["name"],
				arguments=slot["arguments"],
			)


_SEARCH_TARGET_RE = re.compile(
	r"\b(?:find|search(?:\s+for)?|look(?:ing)?\s+for|lost|misplaced|(?:has\s+)?anyone\s+(?:found|seen)|have\s+you\s+seen)"
	r"\s+(?:(?:my|a|an|the|some|any|for)\s+)?(?P<target>.+)",
	re.IGNORECASE,
)
_TRAILING_FILLER_RE = re.compile(
	r"(?:\s+(?:please|pls|on campus|anywhere|somewhere|today|yesterday|again))+$",
	re.IGNORECASE,
)
_NAV_VERB_RE = re.compile(r"\b(?:take me|go to|go back|bring me|navigate|open|show me|head to)\b", re.IGNORECASE)
_REPORT_FOUND_RE = re.compile(r"\breport\b.*\bfound\b|\bfound\b.*\breport\b|^\s*(?:i\s+)?found\s+(?:a|an|some|this|someone)\b", re.IGNORECASE)
_REPORT_LOST_RE = re.compile(r"\breport\b.*\blost\b|\blost\b.*\breport\b", re.IGNORECASE)
_NAV_TARGETS = (
	(re.compile(r"\b(?:dashboard|my claims|claims)\b", re.IGNORECASE), "/dashboard"),
	(re.compile(r"\b(?:browse|listings?|items(?:\s+page)?|all items)\b", re.IGNORECASE), "/items"),
	(re.compile(r"\b(?:home|main page|start page)\b", re.IGNORECASE), "/"),
)


def _clean_target(raw: str) -> str:
	target = raw.strip().strip("\"'`").strip()
	target = re.split(r"[?.!,;]", target, maxsplit=1)[0]
	target = _TRAILING_FILLER_RE.sub("", target.strip())
	return target.strip().strip("\"'`").strip()


def _navigation_path(text: str) -> Optional[str]:
	if _REPORT_FOUND_RE.search(text):
		return "/report/found"
	if _REPORT_LOST_RE.search(text):
		return "/report/lost"
	if not _NAV_VERB_RE.search(text):
		return None
	for pattern, path in _NAV_TARGETS:
		if pattern.search(text):
			return path
	return None


def _search_request(text: str) -> Optional[Dict[str, Any]]:
	match = _SEARCH_TARGET_RE.search(text)
	if match is None:
		return None
	query = _clean_target(match.group("target"))
	if not query:
		return None
	return {"query": query}


def _describe_item(item: Dict[str, Any]) -> str:
	parts = [str(item.get("title") or "Untitled item")]
	details = ", ".join(str(item[key]).lower() for key in ("type", "category") if item.get(key))
	if details:
		parts.append(f"({details})")
	if item.get("location"):
		parts.append(f"at {item['location']}")
	if item.get("status"):
		parts.append(f"status {item['status']}")
	return "- " + " ".join(parts)


_FOUND_RE = re.compile(r"^Found (\d+) items: (.*)$", re.DOTALL)


class LocalChatModel:
	"""Deterministic stand-in for a hosted model.

	It follows the same policy as the hosted model (announce, search, report
	counts truthfully, navigate through the tool) and derives every reply from
	the message history alone, so concurrent turns never share state.
	"""

	name = "local"
	model = "local-rules"

	def __init__(self, chunk_chars: int = _DEFAULT_STREAM_CHUNK_CHARS):
		self._chunk_chars = chunk_chars

	def _text(self, text: str) -> Iterator[ModelEvent]:
		for chunk in _chunk_text(text, self._chunk_chars):
			yield TextDelta(chunk)

	def stream_step(self, messages: List[Dict[str, Any]], *, timeout: float) -> Iterator[ModelEvent]:
		if messages and messages[-1].get("role") == "tool":
			yield from self._text(self._reply_to_tools(messages))
			return

		user_text = ""
		for message in reversed(messages):
			if message.get("role") == "user":
				user_text = str(message.get("content") or "")
				break

		path = _navigation_path(user_text)
		if path is not None:
			yield ToolCallRequest(call_id="call_0", name=assistant_tools.NAVIGATE_TOOL, arguments=json.dumps({"path": path}))
			return

		search = _search_request(user_text)
		if search is not None:
			yield from self._text(f"Searching for {search['query']}...\n\n")
			yield ToolCallRequest(call_id="call_0", name=assistant_tools.SEARCH_TOOL, arguments=json.dumps(search))
			return

		routes = ", ".join(constants.NAVIGATION_ROUTES.values())
		yield from self._text(
			"I can search the reported lost and found items for you, or take you to a page "
			f"({routes}). What are you looking for?"
		)

	def _reply_to_tools(self, messages: List[Dict[str, Any]]) -> str:
		results: Dict[str, str] = {}
		index = len(messages) - 1
		while index >= 0 and messages[index].get("role") == "tool":
			results[str(messages[index].get("tool_call_id"))] = str(messages[index].get("content") or "")
			index -= 1
		calls = messages[index].get("tool_calls") or [] if index >= 0 else []

		replies: List[str] = []
		for call in calls:
			function = call.get("function") or {}
			name = function.get("name")
			result = results.get(str(call.get("id")), "")
			try:
				arguments = json.loads(function.get("arguments") or "{}")
			except json.JSONDecodeError:
				arguments = {}
			if name == assistant_tools.SEARCH_TOOL:
				replies.append(self._search_reply(str(arguments.get("query") or "that item"), result))
			elif name == assistant_tools.NAVIGATE_TOOL:
				replies.append(self._navigate_reply(str(arguments.get("path") or ""), result))
		if not replies:
			return "I'm not sure how to help with that. Could you tell me what you're looking for?"
		return "\n\n".join(replies)

	def _search_reply(self, query: str, result: str) -> str:
		if result.startswith("Error:"):
			return (
				"I couldn't reach the item database just now, so I can't tell whether "
				f"{query} has been reported. Please try again in a moment."
			)
		match = _FOUND_RE.match(result)
		if match is None:
			return f"I checked the database, but I couldn't find any {query} reported as lost/found."
		count = int(match.group(1))
		try:
			items = json.loads(match.group(2))
		except json.JSONDecodeError:
			items = []
		noun = "item" if count == 1 else "items"
		lines = [f'I found {count} {noun} matching "{query}":']
		lines.extend(_describe_item(item) for item in items if isinstance(item, dict))
		lines.append("Open Browse Items to see the full listings or submit a claim.")
		return "\n".join(lines)

	def _navigate_reply(self, path: str, result: str) -> str:
		if result.startswith("Error:"):
			return f"I can't take you to {path}, but I can open any of these pages: {', '.join(redirect_protocol.ALLOWED_PATHS)}."
		label = constants.NAVIGATION_ROUTES.get(path, path)
		return f"Sure! I'll take you to {label}. {redirect_protocol.redirect_tag(path)}"
