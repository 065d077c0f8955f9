"""Streaming chat client for the assistant endpoint.

The session owns the conversation. Each ``send`` posts the full history,
appends the reply chunk by chunk and watches the accumulated reply for the
``__REDIRECT:<path>__`` directive. Navigation and rendering are callbacks so
the same session can back a terminal, a test or a GUI bridge.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from lostfound.backend.services import redirect_protocol


logger = logging.getLogger(__name__)

NavigateCallback = Callable[[str], Union[None, Awaitable[None]]]
RenderCallback = Callable[[List["Turn"]], Union[None, Awaitable[None]]]


@dataclass
class Turn:
	role: str
	content: str
	streaming: bool = False

	@property
	def display_text(self) -> str:
		if self.role != "assistant":
			return self.content
		return redirect_protocol.display_text(self.content, streaming=self.streaming)


async def _maybe_await(value: Any) -> None:
	if inspect.isawaitable(value):
		await value


def _error_message(response: httpx.Response) -> str:
	try:
		payload = response.json()
	except ValueError:
		payload = None
	if isinstance(payload, dict) and isinstance(payload.get("error"), str):
		return payload["error"]
	return f"Server error: {response.status_code}"


class AssistantSessionClient:
	def __init__(
		self,
		base_url: str = "http://127.0.0.1:8000",
		*,
		http_client: Optional[httpx.AsyncClient] = None,
		navigate: Optional[NavigateCallback] = None,
		render: Optional[RenderCallback] = None,
		endpoint: str = "/api/chat",
		timeout_s: float = 30.0,
	):
		self._owns_http = http_client is None
		self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)
		self._navigate = navigate
		self._render = render
		self._endpoint = endpoint
		self._task: Optional[asyncio.Task] = None
		self.turns: List[Turn] = []
		self.error: Optional[str] = None
		self.last_redirect: Optional[str] = None

	@property
	def is_loading(self) -> bool:
		return self._task is not None and not self._task.done()

	def history(self) -> List[Dict[str, str]]:
		"""Request body turns; assistant turns with no visible text are left out."""
		messages: List[Dict[str, str]] = []
		for turn in self.turns:
			content = turn.display_text
			if content.strip():
				messages.append({"role": turn.role, "content": content})
		return messages

	async def send(self, text: str) -> Optional[str]:
		"""Send one user message; returns the path navigated to, if any."""
		if not text.strip():
			return None
		await self.cancel()
		self.turns.append(Turn(role="user", content=text))
		self.error = None
		self.last_redirect = None
		await self._emit_render()
		task = asyncio.ensure_future(self._stream(self.history()))
		self._task = task
		await asyncio.wait({task})
		if task.cancelled():
			return None
		return task.result()

	async def cancel(self) -> None:
		task = self._task
		if task is None or task.done():
			return
		task.cancel()
		await asyncio.wait({task})

	async def aclose(self) -> None:
		await self.cancel()
		if self._owns_http:
			await self._http.aclose()

	async def _emit_render(self) -> None:
		if self._render is not None:
			await _maybe_await(self._render(self.turns))

	async def _stream(self, messages: List[Dict[str, str]]) -> Optional[str]:
		reply: Optional[Turn] = None
		try:
			async with self._http.stream("POST", self._endpoint, json={"messages": messages}) as response:
				if not response.is_success:
					await response.aread()
					self.error = _error_message(response)
					logger.warning("Chat request failed: %s", self.error)
					return None
				reply = Turn(role="assistant", content="", streaming=True)
				self.turns.append(reply)
				await self._emit_render()
				async for chunk in response.aiter_text():
					if not chunk:
						continue
					reply.content += chunk
					await self._emit_render()
					path = redirect_protocol.find_redirect(reply.content)
					if path is not None:
						self.last_redirect = path
						logger.info("Redirecting to %s", path)
						if self._navigate is not None:
							await _maybe_await(self._navigate(path))
						return path
				reply.streaming = False
				await self._emit_render()
		except httpx.HTTPError as exc:
			self.error = f"Failed to send message: {exc}"
			logger.warning("Chat stream failed: %s", exc)
		finally:
			if reply is not None:
				reply.streaming = False
		return None
