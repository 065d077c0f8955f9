import os
import time
from pathlib import Path
from tempfile import TemporaryDirectory
from types import SimpleNamespace
from unittest import TestCase
from unittest.mock import patch

from lostfound.backend.services import assistant_service, assistant_tools
from lostfound.backend.services.assistant_providers import (
	AssistantServiceError,
	OpenAIChatModel,
	TextDelta,
	ToolCallRequest,
)


class _ScriptedModel:
	name = "scripted"
	model = "scripted-1"

	def __init__(self, steps, delay_s: float = 0.0):
		self._steps = list(steps)
		self._delay_s = delay_s
		self.calls = []

	def stream_step(self, messages, *, timeout):
		self.calls.append([dict(message) for message in messages])
		script = self._steps.pop(0) if self._steps else []
		if self._delay_s:
			time.sleep(self._delay_s)
		for event in script:
			if isinstance(event, Exception):
				raise event
			yield event


def _search_call(query: str, call_id: str = "c1") -> ToolCallRequest:
	return ToolCallRequest(call_id=call_id, name="searchItems", arguments=f'{{"query": "{query}"}}')


def _events_of(events, name):
	return [event["data"] for event in events if event["event"] == name]


class AssistantOrchestrationTests(TestCase):
	def setUp(self) -> None:
		self._tmp = TemporaryDirectory()
		self._env = patch.dict(
			os.environ,
			{
				"ITEMS_DB_PATH": str(Path(self._tmp.name) / "items.db"),
				"ASSISTANT_PROVIDER_MODE": "local",
			},
			clear=False,
		)
		self._env.start()
		os.environ.pop("ASSISTANT_MAX_STEPS", None)
		os.environ.pop("ASSISTANT_TURN_TIMEOUT_S", None)

	def tearDown(self) -> None:
		self._env.stop()
		self._tmp.cleanup()

	def _run(self, model, messages=None):
		messages = messages or [{"role": "user", "content": "hello"}]
		with patch.object(assistant_service, "build_model", return_value=model):
			return list(assistant_service.stream_chat(messages))

	def test_text_only_turn_streams_deltas_then_done(self) -> None:
		model = _ScriptedModel([[TextDelta("Hi! "), TextDelta("How can I help?")]])
		events = self._run(model)
		self.assertEqual([event["event"] for event in events], ["delta", "delta", "done"])
		done = events[-1]["data"]
		self.assertEqual(done["text"], "Hi! How can I help?")
		self.assertEqual(done["steps"], 1)
		self.assertIsNone(done["redirect"])
		self.assertEqual(model.calls[0][0]["role"], "system")
		self.assertIn("__REDIRECT:/path__", model.calls[0][0]["content"])

	def test_tool_result_is_fed_back_before_generation_resumes(self) -> None:
		model = _ScriptedModel(
			[
				[TextDelta("Searching for keys..."), _search_call("keys")],
				[TextDelta(" I checked the database, but I couldn't find any keys reported as lost/found.")],
			]
		)
		events = self._run(model)
		self.assertEqual(len(model.calls), 2)
		second_step = model.calls[1]
		self.assertEqual(second_step[-2]["role"], "assistant")
		self.assertEqual(second_step[-2]["tool_calls"][0]["function"]["name"], "searchItems")
		self.assertEqual(second_step[-1]["role"], "tool")
		self.assertEqual(second_step[-1]["tool_call_id"], "c1")
		self.assertEqual(second_step[-1]["content"], 'Search completed. Found 0 items matching "keys".')
		self.assertEqual(events[-1]["data"]["steps"], 2)

	def test_step_budget_ends_turn_silently_with_visible_text(self) -> None:
		model = _ScriptedModel([[_search_call("keys", f"c{i}")] for i in range(8)])
		events = self._run(model)
		self.assertEqual(len(model.calls), 5)
		done = events[-1]["data"]
		self.assertEqual(done["steps"], 5)
		self.assertTrue(done["truncated"])
		self.assertTrue(done["display_text"])
		self.assertEqual(_events_of(events, "error"), [])

	def test_step_budget_is_configurable(self) -> None:
		os.environ["ASSISTANT_MAX_STEPS"] = "2"
		model = _ScriptedModel([[_search_call("keys", f"c{i}")] for i in range(8)])
		self._run(model)
		self.assertEqual(len(model.calls), 2)

	def test_empty_model_output_gets_fallback_text(self) -> None:
		events = self._run(_ScriptedModel([[]]))
		deltas = _events_of(events, "delta")
		self.assertEqual(len(deltas), 1)
		self.assertTrue(deltas[0]["text"].strip())
		self.assertEqual(events[-1]["data"]["display_text"], deltas[0]["text"])

	def test_navigate_tool_tag_is_restated_when_model_omits_it(self) -> None:
		model = _ScriptedModel(
			[
				[ToolCallRequest(call_id="n1", name="navigate", arguments='{"path": "/items"}')],
				[TextDelta("Opening the items page for you.")],
			]
		)
		events = self._run(model)
		done = events[-1]["data"]
		self.assertTrue(done["text"].endswith("__REDIRECT:/items__"))
		self.assertEqual(done["display_text"], "Opening the items page for you.")
		self.assertEqual(_events_of(events, "navigate"), [{"path": "/items"}])
		self.assertEqual(done["redirect"], "/items")

	def test_navigate_event_fires_once_for_tag_in_model_text(self) -> None:
		model = _ScriptedModel(
			[[TextDelta("Sure! __REDIR"), TextDelta("ECT:/dashboard__"), TextDelta(" __REDIRECT:/items__")]]
		)
		events = self._run(model)
		self.assertEqual(_events_of(events, "navigate"), [{"path": "/dashboard"}])

	def test_disallowed_navigation_is_reported_back_to_model(self) -> None:
		model = _ScriptedModel(
			[
				[ToolCallRequest(call_id="n1", name="navigate", arguments='{"path": "/admin"}')],
				[TextDelta("I can't open that page.")],
			]
		)
		events = self._run(model)
		self.assertTrue(model.calls[1][-1]["content"].startswith("Error:"))
		self.assertEqual(_events_of(events, "navigate"), [])
		self.assertNotIn("__REDIRECT", events[-1]["data"]["text"])

	def test_malformed_tool_arguments_are_returned_as_error_text(self) -> None:
		model = _ScriptedModel(
			[
				[ToolCallRequest(call_id="c1", name="searchItems", arguments="{not json")],
				[TextDelta("Sorry, let me try that differently.")],
			]
		)
		self._run(model)
		self.assertEqual(model.calls[1][-1]["content"], "Error: Arguments for searchItems are not valid JSON.")

	def test_provider_error_before_any_text_is_raised(self) -> None:
		error = AssistantServiceError(status_code=502, code="assistant_provider_error", message="boom")
		model = _ScriptedModel([[error]])
		with patch.object(assistant_service, "build_model", return_value=model):
			events = assistant_service.stream_chat([{"role": "user", "content": "hello"}])
			with self.assertRaises(AssistantServiceError):
				next(events)

	def test_provider_error_after_text_keeps_turn_well_formed(self) -> None:
		error = AssistantServiceError(status_code=502, code="assistant_provider_error", message="boom")
		model = _ScriptedModel([[TextDelta("Searching for keys..."), _search_call("keys")], [error]])
		events = self._run(model)
		self.assertEqual(_events_of(events, "error")[0]["code"], "assistant_provider_error")
		done = events[-1]
		self.assertEqual(done["event"], "done")
		self.assertTrue(done["data"]["text"].startswith("Searching for keys..."))
		self.assertIn("Please send your message again", done["data"]["text"])

	def test_turn_timeout_aborts_generation(self) -> None:
		os.environ["ASSISTANT_TURN_TIMEOUT_S"] = "0.05"
		model = _ScriptedModel(
			[[TextDelta("late reply"), _search_call("keys")], [TextDelta("never")]],
			delay_s=0.1,
		)
		events = self._run(model)
		self.assertEqual(len(model.calls), 1)
		self.assertEqual(_events_of(events, "error")[0]["code"], "assistant_turn_timeout")
		self.assertEqual(events[-1]["data"]["text"], "late reply")

	def test_invalid_messages_are_rejected_before_streaming(self) -> None:
		with self.assertRaises(ValueError):
			assistant_service.stream_chat([])
		with self.assertRaises(ValueError):
			assistant_service.stream_chat([{"role": "system", "content": "hi"}])
		with self.assertRaises(ValueError):
			assistant_service.stream_chat([{"role": "user", "content": "   "}])

	def test_openai_mode_without_key_is_unconfigured(self) -> None:
		os.environ["ASSISTANT_PROVIDER_MODE"] = "openai"
		os.environ.pop("OPENAI_API_KEY", None)
		with self.assertRaises(AssistantServiceError) as ctx:
			assistant_service.stream_chat([{"role": "user", "content": "hi"}])
		self.assertEqual(ctx.exception.status_code, 503)
		self.assertEqual(ctx.exception.code, "assistant_provider_unconfigured")

	def test_unknown_provider_mode_is_unconfigured(self) -> None:
		os.environ["ASSISTANT_PROVIDER_MODE"] = "groq"
		with self.assertRaises(AssistantServiceError) as ctx:
			assistant_service.provider_info()
		self.assertEqual(ctx.exception.status_code, 503)

	def test_openai_mode_builds_chat_model_from_env(self) -> None:
		os.environ["ASSISTANT_PROVIDER_MODE"] = "openai"
		os.environ["OPENAI_API_KEY"] = "test-key"
		os.environ["ASSISTANT_OPENAI_MODEL"] = "llama-3.3-70b-versatile"
		os.environ["ASSISTANT_OPENAI_BASE_URL"] = "https://api.groq.com/openai/v1"
		sentinel = object()
		with patch.object(assistant_service, "build_openai_client", return_value=sentinel) as factory:
			model = assistant_service.build_model()
		self.assertIsInstance(model, OpenAIChatModel)
		self.assertEqual(model.model, "llama-3.3-70b-versatile")
		factory.assert_called_once_with(
			api_key="test-key",
			timeout_s=30.0,
			base_url="https://api.groq.com/openai/v1",
		)


def _chunk(content=None, tool_calls=None):
	return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))])


def _fragment(index, call_id=None, name=None, arguments=None):
	return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class _FakeStream:
	def __init__(self, chunks):
		self._chunks = chunks
		self.closed = False

	def __iter__(self):
		return iter(self._chunks)

	def close(self):
		self.closed = True


class _FakeCompletions:
	def __init__(self, *, stream=None, error=None):
		self._stream = stream
		self._error = error
		self.kwargs = None

	def create(self, **kwargs):
		self.kwargs = kwargs
		if self._error is not None:
			raise self._error
		return self._stream


def _fake_client(completions):
	return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class OpenAIChatModelTests(TestCase):
	def test_stream_step_yields_text_and_reassembled_tool_calls(self) -> None:
		stream = _FakeStream(
			[
				_chunk(content="Searching for "),
				_chunk(content="keys..."),
				_chunk(tool_calls=[_fragment(0, call_id="call_a", name="searchItems", arguments='{"que')]),
				_chunk(tool_calls=[_fragment(0, arguments='ry": "keys"}')]),
				SimpleNamespace(choices=[]),
			]
		)
		completions = _FakeCompletions(stream=stream)
		model = OpenAIChatModel(client=_fake_client(completions), model="gpt-4.1-mini")

		events = list(model.stream_step([{"role": "user", "content": "find keys"}], timeout=5.0))

		self.assertEqual(events[:2], [TextDelta("Searching for "), TextDelta("keys...")])
		self.assertEqual(events[2], ToolCallRequest(call_id="call_a", name="searchItems", arguments='{"query": "keys"}'))
		self.assertTrue(stream.closed)
		self.assertTrue(completions.kwargs["stream"])
		self.assertEqual(completions.kwargs["tools"], assistant_tools.TOOL_SCHEMAS)
		self.assertEqual(completions.kwargs["model"], "gpt-4.1-mini")

	def test_timeout_maps_to_504(self) -> None:
		class APITimeoutError(Exception):
			pass

		model = OpenAIChatModel(client=_fake_client(_FakeCompletions(error=APITimeoutError("slow"))), model="m")
		with self.assertRaises(AssistantServiceError) as ctx:
			list(model.stream_step([], timeout=1.0))
		self.assertEqual(ctx.exception.status_code, 504)
		self.assertEqual(ctx.exception.code, "assistant_provider_timeout")

	def test_api_error_maps_to_502(self) -> None:
		class APIError(Exception):
			pass

		model = OpenAIChatModel(client=_fake_client(_FakeCompletions(error=APIError("down"))), model="m")
		with self.assertRaises(AssistantServiceError) as ctx:
			list(model.stream_step([], timeout=1.0))
		self.assertEqual(ctx.exception.status_code, 502)
		self.assertEqual(ctx.exception.code, "assistant_provider_error")
