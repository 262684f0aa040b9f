import unittest

from personacraft.config_manager import ConfigStore, ConfigurationError
from personacraft.persona_models import BuiltinPersona
from personacraft.runtime_settings import build_runtime_settings


class TestConfigStore(unittest.TestCase):
    def setUp(self):
        self.store = ConfigStore.from_runtime_settings(build_runtime_settings({}, env_data={}))

    def test_defaults_from_runtime_settings(self):
        config = self.store.get()
        self.assertEqual(config["default_persona_name"], "enthusiastic")
        self.assertEqual(config["default_intensity"], 3)
        self.assertEqual(config["max_intensity"], 5)
        self.assertEqual(
            {key: config["safety"][key] for key in ("enabled", "confidence_threshold", "strict_mode", "check_method")},
            {"enabled": True, "confidence_threshold": 0.5, "strict_mode": True, "check_method": "llm"},
        )

    def test_get_returns_a_copy(self):
        self.store.get()["safety"]["enabled"] = False
        self.assertTrue(self.store.get_safety_config()["enabled"])

    def test_update_merges_and_clamps(self):
        config = self.store.update({"default_persona_name": "sarcastic", "default_intensity": 9})
        self.assertEqual(config["default_persona_name"], "sarcastic")
        self.assertEqual(config["default_intensity"], 5)

        config = self.store.update({"max_intensity": 2})
        self.assertEqual(config["default_intensity"], 2)

    def test_update_safety_section_merges_fields(self):
        config = self.store.update({"safety": {"strict_mode": False}})
        self.assertFalse(config["safety"]["strict_mode"])
        self.assertTrue(config["safety"]["enabled"])

    def test_update_safety_config_normalizes_values(self):
        safety = self.store.update_safety_config(
            {"check_method": "telepathy", "failure_policy": "fail_open", "confidence_threshold": 3}
        )
        self.assertEqual(safety["check_method"], "llm")
        self.assertEqual(safety["failure_policy"], "fail_open")
        self.assertEqual(safety["confidence_threshold"], 1.0)

    def test_uninitialized_safety_raises_configuration_error(self):
        store = ConfigStore(safety=None)
        with self.assertRaises(ConfigurationError):
            store.get_safety_config()
        with self.assertRaises(ConfigurationError):
            store.update_safety_config({"enabled": False})

    def test_update_rejects_non_mapping(self):
        with self.assertRaises(TypeError):
            self.store.update(["nope"])

    def test_create_intensity_config_uses_default_when_missing(self):
        sarcastic = BuiltinPersona("sarcastic")
        self.assertEqual(self.store.create_intensity_config(sarcastic).intensity, 3)
        self.assertEqual(self.store.create_intensity_config(sarcastic, 0).intensity, 0)

        self.store.update({"max_intensity": 4})
        config = self.store.create_intensity_config(sarcastic, 10)
        self.assertEqual(config.intensity, 4)
        self.assertTrue(config.allow_strong_language)


if __name__ == "__main__":
    unittest.main()
