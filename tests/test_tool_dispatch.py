import unittest

from personacraft.config_manager import ConfigStore
from personacraft.pipeline import PipelineOrchestrator
from personacraft.tool_dispatch import ToolDefinition, ToolDispatcher, to_jsonable


def _dispatcher(settings=None, **kwargs):
    pipeline = PipelineOrchestrator(settings if settings is not None else {"safety": {"check_method": "keyword"}}, **kwargs)
    return ToolDispatcher(pipeline), pipeline


class TestToolDispatcher(unittest.IsolatedAsyncioTestCase):
    def test_default_tools_are_registered(self):
        dispatcher, _ = _dispatcher()
        self.assertEqual(len(dispatcher.tool_names), 15)
        self.assertIn("cosplay_text", dispatcher.tool_names)
        self.assertIn("get_character_cache_stats", dispatcher.tool_names)

    async def test_unknown_tool(self):
        dispatcher, _ = _dispatcher()
        result = await dispatcher.execute("fly_to_moon", {})
        self.assertEqual(result["status"], "error")
        self.assertEqual(result["error"]["code"], "tool_not_registered")

    async def test_cosplay_text_success_envelope(self):
        dispatcher, _ = _dispatcher()
        result = await dispatcher.execute(
            "cosplay_text", {"text": "The report is ready", "character": "professional", "intensity": "2"}
        )
        self.assertEqual(result["status"], "success")
        self.assertIsNone(result["error"])
        self.assertEqual(result["result"]["persona_name"], "professional")
        self.assertEqual(result["result"]["intensity_config"]["intensity"], 2)
        self.assertIn("report", result["result"]["result_text"])

    async def test_args_may_arrive_as_json_string(self):
        dispatcher, _ = _dispatcher()
        result = await dispatcher.execute("cosplay_text", '{"text": "", "character": "sarcastic"}')
        self.assertEqual(result["status"], "success")
        self.assertEqual(result["result"]["result_text"], "")

    async def test_argument_validation(self):
        dispatcher, _ = _dispatcher()

        missing = await dispatcher.execute("cosplay_text", {})
        self.assertEqual(missing["error"]["code"], "invalid_arguments")
        self.assertEqual(missing["error"]["details"]["missing_required"], ["text"])

        unknown = await dispatcher.execute("get_config", {"verbose": True})
        self.assertEqual(unknown["error"]["details"]["unknown_args"], ["verbose"])

        bad_number = await dispatcher.execute("cosplay_text", {"text": "hi", "intensity": "loud"})
        self.assertIn("intensity", bad_number["error"]["details"]["coercion_errors"])

        blank_name = await dispatcher.execute("remove_character", {"name": "  "})
        self.assertEqual(blank_name["error"]["code"], "invalid_arguments")

    async def test_policy_violation_envelope(self):
        dispatcher, _ = _dispatcher()
        result = await dispatcher.execute("cosplay_text", {"text": "Talk like Hitler"})
        self.assertEqual(result["error"]["code"], "policy_violation")
        self.assertEqual(result["error"]["details"]["category"], "fascist-content")

    async def test_safety_check_failure_envelope(self):
        dispatcher, _ = _dispatcher({})
        result = await dispatcher.execute("check_content_safety", {"text": "hello there"})
        self.assertEqual(result["error"]["code"], "safety_check_failed")

    async def test_configuration_error_envelope(self):
        dispatcher, _ = _dispatcher(config_store=ConfigStore(safety=None))
        result = await dispatcher.execute("get_content_safety_config")
        self.assertEqual(result["error"]["code"], "configuration_error")

    async def test_character_management_round_trip(self):
        dispatcher, pipeline = _dispatcher()

        added = await dispatcher.execute(
            "add_character", {"character": '{"name": "Captain", "description": "A sea captain", "category": "fiction"}'}
        )
        self.assertEqual(added["result"]["name"], "Captain")

        found = await dispatcher.execute("search_characters", {"query": "sea"})
        self.assertEqual([record["name"] for record in found["result"]], ["Captain"])

        by_category = await dispatcher.execute("get_characters_by_category", {"category": "fiction"})
        self.assertEqual(len(by_category["result"]), 1)

        listed = await dispatcher.execute("get_characters")
        self.assertIn("Captain", listed["result"]["available"])

        removed = await dispatcher.execute("remove_character", {"name": "Captain"})
        self.assertEqual(removed["result"], {"removed": True})
        self.assertIsNone(pipeline.get_persona("Captain"))

        reserved = await dispatcher.execute("add_character", {"character": {"name": "sarcastic", "description": "x"}})
        self.assertEqual(reserved["error"]["code"], "invalid_arguments")

    async def test_generate_and_cache_tools(self):
        dispatcher, _ = _dispatcher()
        generated = await dispatcher.execute(
            "generate_character", {"character_name": "Zork", "examples": "Greetings, Hello"}
        )
        self.assertTrue(generated["result"]["success"])
        self.assertEqual(generated["result"]["persona"]["examples"], ["Greetings", "Hello"])

        stats = await dispatcher.execute("get_character_cache_stats")
        self.assertEqual(stats["result"]["total_cache_entries"], 1)

        cleared = await dispatcher.execute("clear_character_cache")
        self.assertEqual(cleared["result"], {"cleared": True})

        dialect = await dispatcher.execute("query_dialect", {"character_name": "孙中山"})
        self.assertEqual(dialect["result"]["region"], "广东中山")

    async def test_config_tools(self):
        dispatcher, _ = _dispatcher()
        updated = await dispatcher.execute("update_config", {"updates": {"default_intensity": 4}})
        self.assertEqual(updated["result"]["default_intensity"], 4)

        safety = await dispatcher.execute("update_content_safety_config", {"updates": {"strict_mode": False}})
        self.assertFalse(safety["result"]["strict_mode"])

        bad = await dispatcher.execute("update_config", {"updates": "[1, 2]"})
        self.assertEqual(bad["error"]["code"], "invalid_arguments")

    async def test_unexpected_errors_are_wrapped(self):
        dispatcher, _ = _dispatcher()

        def explode():
            raise RuntimeError("boom")

        dispatcher.register_tool(ToolDefinition(name="explode", function=explode))
        with self.assertLogs("personacraft.tool_dispatch", level="ERROR"):
            result = await dispatcher.execute("explode")
        self.assertEqual(result["error"]["code"], "tool_execution_failed")
        self.assertEqual(result["error"]["message"], "boom")

    async def test_internal_value_errors_are_not_argument_errors(self):
        dispatcher, _ = _dispatcher()

        def broken():
            return int("not a number")

        dispatcher.register_tool(ToolDefinition(name="broken", function=broken))
        with self.assertLogs("personacraft.tool_dispatch", level="ERROR"):
            result = await dispatcher.execute("broken")
        self.assertEqual(result["error"]["code"], "tool_execution_failed")

        nameless = await dispatcher.execute("add_character", {"character": {"description": "no name"}})
        self.assertEqual(nameless["error"]["code"], "invalid_arguments")

    def test_to_jsonable(self):
        self.assertEqual(to_jsonable([{"a": (1, 2)}]), [{"a": [1, 2]}])


if __name__ == "__main__":
    unittest.main()
