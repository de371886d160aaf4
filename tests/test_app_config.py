import json
import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from loguru import logger

from campaign_assistant.app_config import (
    _to_bool,
    load_json_config,
    parse_app_config,
    resolve_runtime_env,
)
from campaign_assistant.logging_config import setup_logging

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class AppConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"appconfig-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)

    def tearDown(self) -> None:
        logger.remove()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def test_defaults(self) -> None:
        app = parse_app_config({})
        self.assertEqual("local-user", app.user_id)
        self.assertIsNone(app.user_plan)
        self.assertEqual("essential", app.mode)
        self.assertEqual(25, app.non_pro_max_credits)
        self.assertEqual(20.0, app.planner_timeout_seconds)
        self.assertEqual(45.0, app.generation_timeout_seconds)
        self.assertEqual([], app.provider_priority)
        self.assertTrue(app.local_fallback_enabled)
        self.assertIsNone(app.log_consumers)

    def test_pascal_case_keys(self) -> None:
        app = parse_app_config(
            {
                "UserId": " ana ",
                "UserPlan": "PRO",
                "Mode": "Premium",
                "ProviderPriority": ["claude", "deepseek", "nonsense", "deepseek"],
                "LocalFallbackEnabled": "off",
            }
        )
        self.assertEqual("ana", app.user_id)
        self.assertEqual("pro", app.user_plan)
        self.assertEqual("premium", app.mode)
        self.assertEqual(["anthropic", "deepseek"], app.provider_priority)
        self.assertFalse(app.local_fallback_enabled)

    def test_to_bool(self) -> None:
        self.assertTrue(_to_bool("Yes"))
        self.assertFalse(_to_bool("0", default=True))
        self.assertTrue(_to_bool(None, default=True))
        self.assertTrue(_to_bool(1))

    def test_load_json_config(self) -> None:
        path = self._tmp_dir / "config.json"
        path.write_text(json.dumps({"UserId": "from-file"}))
        self.assertEqual({"UserId": "from-file"}, load_json_config(path))
        self.assertEqual({}, load_json_config(self._tmp_dir / "missing.json"))

    def test_runtime_env(self) -> None:
        app = parse_app_config({"ProviderPriority": ["openai"]})

        env = resolve_runtime_env(app, {"DEEPSEEK_API_KEY": "k", "AI_PROVIDER": "claude", "AI_PROVIDER_STRICT": "true"})
        self.assertEqual(["deepseek"], [c.name for c in env.provider_configs])
        self.assertEqual("anthropic", env.preferred_provider)
        self.assertTrue(env.strict_preference)
        self.assertEqual(["openai"], env.priority)

        overridden = resolve_runtime_env(app, {"AI_PROVIDER_PRIORITY": "grok, router"})
        self.assertEqual(["grok", "openrouter"], overridden.priority)
        self.assertIsNone(overridden.preferred_provider)
        self.assertFalse(overridden.strict_preference)

    def test_setup_logging_describes_sinks(self) -> None:
        log_path = str(self._tmp_dir / "logs" / "assistant.jsonl")
        descriptions = setup_logging(
            "DEBUG",
            [{"type": "file", "path": log_path, "serialize": True}, {"type": "nope"}],
        )
        self.assertEqual([f"file ({log_path}, jsonl, DEBUG)"], descriptions)
        self.assertTrue(Path(log_path).parent.exists())

    def test_file_sink_tags_records_with_request_id(self) -> None:
        log_path = self._tmp_dir / "assistant.log"
        setup_logging("DEBUG", [{"type": "file", "path": str(log_path)}])

        logger.bind(request_id="r-1").info("planned turn")
        logger.info("outside a turn")
        logger.remove()

        lines = log_path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(2, len(lines))
        self.assertIn("| req=r-1 |", lines[0])
        self.assertTrue(lines[0].endswith("planned turn"))
        self.assertIn("| req=- |", lines[1])

    def test_module_filter_drops_other_packages(self) -> None:
        log_path = self._tmp_dir / "assistant.log"
        descriptions = setup_logging(
            "INFO",
            [{"type": "file", "path": str(log_path), "modules": ["campaign_assistant"]}],
        )
        self.assertEqual([f"file ({log_path}, text, INFO, only campaign_assistant)"], descriptions)

        logger.info("from the test module")
        logger.patch(lambda record: record.update(name="campaign_assistant.orchestrator")).info("from the app")
        logger.remove()

        content = log_path.read_text(encoding="utf-8")
        self.assertIn("from the app", content)
        self.assertNotIn("from the test module", content)


if __name__ == "__main__":
    unittest.main()
