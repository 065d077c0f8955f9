import json
import os
import sqlite3
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase
from unittest.mock import patch

from lostfound.backend.adapters import sqlite_adapter
from lostfound.backend.services import assistant_tools, item_service


class AssistantToolsTests(TestCase):
	def setUp(self) -> None:
		self._tmp = TemporaryDirectory()
		self.db_path = str(Path(self._tmp.name) / "items.db")
		self._env = patch.dict(os.environ, {"ITEMS_DB_PATH": self.db_path}, clear=False)
		self._env.start()

	def tearDown(self) -> None:
		self._env.stop()
		self._tmp.cleanup()

	def _search(self, arguments: dict) -> str:
		call = assistant_tools.parse_tool_call(name="searchItems", arguments=json.dumps(arguments), call_id="c1")
		return assistant_tools.execute_tool(call)

	def test_zero_results_is_distinct_from_errors_and_matches(self) -> None:
		result = self._search({"query": "purple scarf"})
		self.assertEqual(result, 'Search completed. Found 0 items matching "purple scarf".')
		self.assertFalse(result.startswith("Error:"))
		self.assertNotRegex(result, r"^Found \d+ items:")

	def test_matches_are_serialized_with_count_and_projection(self) -> None:
		sqlite_adapter.insert_item(
			title="Blue Wallet",
			item_type="FOUND",
			category="OTHER",
			user_id="owner-secret",
			location="Library",
			image_url="https://cdn.example/wallet.png",
			db_path=self.db_path,
		)
		result = self._search({"query": "wallet", "type": "found"})
		self.assertTrue(result.startswith("Found 1 items: "))
		items = json.loads(result[len("Found 1 items: ") :])
		self.assertEqual(items[0]["title"], "Blue Wallet")
		self.assertEqual(items[0]["location"], "Library")
		self.assertEqual(
			set(items[0]),
			{"title", "description", "type", "category", "status", "location", "created_at"},
		)
		self.assertNotIn("owner-secret", result)

	def test_backend_failure_becomes_error_string(self) -> None:
		with patch.object(item_service, "search_items", side_effect=sqlite3.OperationalError("database is locked")):
			result = self._search({"query": "keys"})
		self.assertEqual(result, "Error: Failed to search. database is locked")

	def test_storage_os_failure_becomes_error_string(self) -> None:
		with patch.object(sqlite_adapter, "init_db", side_effect=PermissionError("read-only fs")):
			result = self._search({"query": "keys"})
		self.assertEqual(result, "Error: Failed to search. read-only fs")

	def test_navigate_acknowledges_with_redirect_tag(self) -> None:
		call = assistant_tools.parse_tool_call(name="navigate", arguments={"path": "/report/found"})
		self.assertEqual(
			assistant_tools.execute_tool(call),
			"Action: Navigating to /report/found. __REDIRECT:/report/found__",
		)
		self.assertEqual(assistant_tools.navigation_target(call), "/report/found")

	def test_navigate_rejects_paths_outside_allow_list(self) -> None:
		call = assistant_tools.parse_tool_call(name="navigate", arguments={"path": "/report-lost"})
		result = assistant_tools.execute_tool(call)
		self.assertTrue(result.startswith("Error:"))
		self.assertNotIn("__REDIRECT", result)
		self.assertIsNone(assistant_tools.navigation_target(call))

	def test_parse_tool_call_rejects_bad_input(self) -> None:
		with self.assertRaises(assistant_tools.ToolCallError):
			assistant_tools.parse_tool_call(name="searchItems", arguments="{not json")
		with self.assertRaises(assistant_tools.ToolCallError):
			assistant_tools.parse_tool_call(name="searchItems", arguments={"query": "keys", "type": "STOLEN"})
		with self.assertRaises(assistant_tools.ToolCallError) as ctx:
			assistant_tools.parse_tool_call(name="deleteItems", arguments={})
		self.assertIn("Unknown tool", str(ctx.exception))

	def test_tool_schemas_cover_both_tools(self) -> None:
		names = [schema["function"]["name"] for schema in assistant_tools.TOOL_SCHEMAS]
		self.assertEqual(names, ["searchItems", "navigate"])
		navigate = assistant_tools.TOOL_SCHEMAS[1]["function"]["parameters"]["properties"]["path"]
		self.assertIn("/items", navigate["enum"])
