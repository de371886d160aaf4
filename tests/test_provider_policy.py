import unittest

from campaign_assistant.model_registry import ModelMode
from campaign_assistant.provider import (
    DEFAULT_ANTHROPIC_MAX_TOKENS,
    ProviderConfig,
    as_provider_name,
    build_provider_configs,
    create_provider,
)
from campaign_assistant.provider_policy import build_attempt_order, parse_provider_list, resolve_provider_policy


class ProviderConfigTests(unittest.TestCase):
    def test_only_keyed_providers_are_configured(self) -> None:
        configs = build_provider_configs({"OPENAI_API_KEY": "sk-1", "DEEPSEEK_API_KEY": "  ", "GROK_API_KEY": "xk"})
        self.assertEqual(["openai", "grok"], [c.name for c in configs])
        self.assertEqual("gpt-4.1-mini", configs[0].model)
        self.assertEqual("https://api.x.ai/v1", configs[1].base_url)

    def test_model_and_base_url_overrides(self) -> None:
        configs = build_provider_configs(
            {"LLAMA_API_KEY": "k", "LLAMA_MODEL": "Llama-4", "LLAMA_BASE_URL": "https://example.test/v1/"}
        )
        self.assertEqual("Llama-4", configs[0].model)
        self.assertEqual("https://example.test/v1", configs[0].base_url)

    def test_openrouter_headers_and_anthropic_cap(self) -> None:
        configs = build_provider_configs(
            {
                "OPENROUTER_API_KEY": "k",
                "OPENROUTER_HTTP_REFERER": "https://app.example",
                "OPENROUTER_X_TITLE": "Campaigns",
                "ANTHROPIC_API_KEY": "k",
            }
        )
        by_name = {c.name: c for c in configs}
        self.assertEqual(
            {"HTTP-Referer": "https://app.example", "X-Title": "Campaigns"},
            by_name["openrouter"].headers,
        )
        self.assertEqual(DEFAULT_ANTHROPIC_MAX_TOKENS, by_name["anthropic"].max_tokens_cap)
        self.assertIsNone(by_name["anthropic"].base_url)

    def test_aliases(self) -> None:
        self.assertEqual("anthropic", as_provider_name(" Claude "))
        self.assertEqual("grok", as_provider_name("xai"))
        self.assertIsNone(as_provider_name("mystery"))

    def test_unknown_provider_rejected(self) -> None:
        with self.assertRaises(ValueError):
            create_provider(ProviderConfig(name="mystery", api_key="k", model="m"))


class ProviderPolicyTests(unittest.TestCase):
    def test_starter_plan_allow_list(self) -> None:
        policy = resolve_provider_policy("free", {})
        self.assertEqual(frozenset({"llama", "deepseek", "openrouter", "openai"}), policy.allowed)
        self.assertNotIn("anthropic", policy.allowed)

    def test_paid_plan_allows_everything(self) -> None:
        policy = resolve_provider_policy("premium", {})
        self.assertIn("anthropic", policy.allowed)
        self.assertIn("grok", policy.allowed)

    def test_env_overrides(self) -> None:
        policy = resolve_provider_policy("free", {"AI_POLICY_STARTER_ALLOW": "openai, gpt, bogus"})
        self.assertEqual(frozenset({"openai"}), policy.allowed)

    def test_parse_provider_list_falls_back(self) -> None:
        self.assertEqual(["deepseek"], parse_provider_list("", ["deepseek"]))
        self.assertEqual(["openai", "llama"], parse_provider_list(["gpt", "meta", "openai"]))


class AttemptOrderTests(unittest.TestCase):
    def test_requested_then_preferred_then_mode(self) -> None:
        order = build_attempt_order(
            ["openai", "deepseek", "anthropic", "openrouter"],
            requested="anthropic",
            preferred="deepseek",
            mode=ModelMode.PREMIUM,
        )
        self.assertEqual(["anthropic", "deepseek", "openai", "openrouter"], order)

    def test_essential_mode_order(self) -> None:
        order = build_attempt_order(["openai", "deepseek", "openrouter"])
        self.assertEqual(["openrouter", "deepseek", "openai"], order)

    def test_unavailable_providers_are_skipped(self) -> None:
        order = build_attempt_order(["openai"], requested="anthropic", preferred="grok")
        self.assertEqual(["openai"], order)


if __name__ == "__main__":
    unittest.main()
