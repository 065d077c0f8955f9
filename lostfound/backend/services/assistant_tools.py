from __future__ import annotations

import json
import logging
import sqlite3
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from lostfound.backend.services import item_service, redirect_protocol


logger = logging.getLogger(__name__)

SEARCH_TOOL = "searchItems"
NAVIGATE_TOOL = "navigate"


class ToolCallError(Exception):
	pass


class SearchItemsArgs(BaseModel):
	model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

	query: str = Field(default="", description='The search query (e.g., "keys", "blue wallet")')
	type: Optional[Literal["LOST", "FOUND"]] = None

	@field_validator("type", mode="before")
	@classmethod
	def _upper_type(cls, value: Any) -> Any:
		if isinstance(value, str):
			cleaned = value.strip().upper()
			return cleaned or None
		return value


class NavigateArgs(BaseModel):
	model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

	path: str = Field(..., min_length=1, description="The relative URL path to navigate to (e.g., /items)")


class SearchItemsCall(BaseModel):
	name: Literal["searchItems"] = SEARCH_TOOL
	call_id: str = ""
	arguments: SearchItemsArgs


class NavigateCall(BaseModel):
	name: Literal["navigate"] = NAVIGATE_TOOL
	call_id: str = ""
	arguments: NavigateArgs


ToolCall = Annotated[Union[SearchItemsCall, NavigateCall], Field(discriminator="name")]
_TOOL_CALL_ADAPTER: TypeAdapter = TypeAdapter(ToolCall)


def _route_list() -> str:
	return ", ".join(redirect_protocol.ALLOWED_PATHS)


TOOL_SCHEMAS: List[Dict[str, Any]] = [
	{
		"type": "function",
		"function": {
			"name": SEARCH_TOOL,
			"description": "Search for lost or found items in the database",
			"parameters": {
				"type": "object",
				"properties": {
					"query": {
						"type": "string",
						"description": 'The search query (e.g., "keys", "blue wallet")',
					},
					"type": {"type": "string", "enum": ["LOST", "FOUND"]},
				},
				"required": ["query"],
			},
		},
	},
	{
		"type": "function",
		"function": {
			"name": NAVIGATE_TOOL,
			"description": "Navigate the user to a specific page path",
			"parameters": {
				"type": "object",
				"properties": {
					"path": {
						"type": "string",
						"enum": list(redirect_protocol.ALLOWED_PATHS),
						"description": "The relative URL path to navigate to.",
					},
				},
				"required": ["path"],
			},
		},
	},
]


def parse_tool_call(*, name: str, arguments: Union[str, Dict[str, Any], None], call_id: str = "") -> ToolCall:
	if isinstance(arguments, str):
		raw = arguments.strip() or "{}"
		try:
			arguments = json.loads(raw)
		except json.JSONDecodeError as exc:
			raise ToolCallError(f"Arguments for {name} are not valid JSON.") from exc
	if arguments is None:
		arguments = {}
	if not isinstance(arguments, dict):
		raise ToolCallError(f"Arguments for {name} must be an object.")
	try:
		return _TOOL_CALL_ADAPTER.validate_python({"name": name, "call_id": call_id, "arguments": arguments})
	except ValidationError as exc:
		if name not in (SEARCH_TOOL, NAVIGATE_TOOL):
			raise ToolCallError(f"Unknown tool '{name}'.") from exc
		issue = exc.errors()[0] if exc.errors() else {}
		raise ToolCallError(f"Invalid arguments for {name}: {issue.get('msg', 'validation failed')}.") from exc


def _search(call: SearchItemsCall) -> str:
	query = call.arguments.query
	item_type = call.arguments.type
	logger.info("Searching items for %r (type: %s)", query, item_type or "ALL")
	try:
		matches = item_service.search_items(query, item_type=item_type)
	except (sqlite3.Error, OSError) as exc:
		logger.exception("Item search failed")
		return f"Error: Failed to search. {exc}"
	if not matches:
		return f'Search completed. Found 0 items matching "{query}".'
	return f"Found {len(matches)} items: {json.dumps(matches, ensure_ascii=False)}"


def _navigate(call: NavigateCall) -> str:
	path = call.arguments.path
	if not redirect_protocol.is_allowed_path(path):
		return f"Error: '{path}' is not a valid page. Valid paths: {_route_list()}."
	return f"Action: Navigating to {path}. {redirect_protocol.redirect_tag(path)}"


def execute_tool(call: ToolCall) -> str:
	if isinstance(call, SearchItemsCall):
		return _search(call)
	if isinstance(call, NavigateCall):
		return _navigate(call)
	raise TypeError(f"Unhandled tool call: {call!r}")


def navigation_target(call: ToolCall) -> Optional[str]:
	if isinstance(call, NavigateCall) and redirect_protocol.is_allowed_path(call.arguments.path):
		return call.arguments.path
	return None
