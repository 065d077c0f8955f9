"""In-band navigation directive shared by the chat endpoint and its clients.

The assistant asks a client to change page by writing ``__REDIRECT:<path>__``
into its plain-text reply. Matching always runs against the whole buffer
received so far, never a single chunk, so a tag split across chunks is still
found once its closing delimiter arrives.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

from lostfound.backend import constants


REDIRECT_TAG_RE = re.compile(r"__REDIRECT:(.+?)__")
ALLOWED_PATHS: Tuple[str, ...] = tuple(constants.NAVIGATION_ROUTES)

_REDIRECT_PREFIX = "__REDIRECT:"
_OPEN_TAG_RE = re.compile(r"__REDIRECT:.*$")
_FUNCTION_BLOCK_RE = re.compile(r"<function[\s\S]*?</function>")
_FUNCTION_OPEN_RE = re.compile(r"<function[\s\S]*$")
_CHECKING_BLOCK = "\n\n*Checking database...*\n\n"
_CHECKING_TAIL = "\n*Checking database...*"


def redirect_tag(path: str) -> str:
	return f"__REDIRECT:{path}__"


def is_allowed_path(path: str) -> bool:
	return path.strip() in ALLOWED_PATHS


def find_redirect(text: str) -> Optional[str]:
	"""Return the first allow-listed redirect path in ``text``, if any."""
	for match in REDIRECT_TAG_RE.finditer(text):
		path = match.group(1).strip()
		if is_allowed_path(path):
			return path
	return None


def _strip_partial_prefix(text: str) -> str:
	# Only applied while the reply is still streaming; a finished reply keeps a trailing "__".
	for size in range(len(_REDIRECT_PREFIX) - 1, 1, -1):
		if text.endswith(_REDIRECT_PREFIX[:size]):
			return text[:-size]
	return text


def display_text(text: str, *, streaming: bool = False) -> str:
	"""Visible form of an assistant reply: control tags and tool markup removed.

	With ``streaming`` set, a trailing fragment that could still grow into a
	tag (``"...__REDIR"``) is hidden as well, so it never flashes on screen.
	"""
	cleaned = REDIRECT_TAG_RE.sub("", text)
	cleaned = _OPEN_TAG_RE.sub("", cleaned)
	if streaming:
		cleaned = _strip_partial_prefix(cleaned)
	cleaned = _FUNCTION_BLOCK_RE.sub(_CHECKING_BLOCK, cleaned)
	cleaned = _FUNCTION_OPEN_RE.sub(_CHECKING_TAIL, cleaned)
	cleaned = cleaned.replace("Action: Navigating", "Navigating")
	return cleaned.strip()
