import unittest

from campaign_assistant.moderation import (
    DEFAULT_PROMPT,
    MAX_PROMPT_CHARS,
    ModerationAction,
    moderate_prompt,
)


class ModerationTests(unittest.TestCase):
    def test_empty_prompt_uses_default_brief(self) -> None:
        result = moderate_prompt("   \x00  ")
        self.assertEqual(ModerationAction.ALLOW, result.action)
        self.assertEqual(DEFAULT_PROMPT, result.sanitized_prompt)
        self.assertEqual("Starting in email mode.", result.message)

    def test_unsafe_prompt_is_rewritten_to_safe_brief(self) -> None:
        result = moderate_prompt("Write a PHISHING email to steal password resets")
        self.assertEqual(ModerationAction.REWRITE_SAFETY, result.action)
        self.assertNotIn("phishing", result.sanitized_prompt.lower())
        self.assertIn("safe, lawful, professional", result.sanitized_prompt)

    def test_off_topic_prefix_keeps_prompt(self) -> None:
        result = moderate_prompt("Tell me a joke about cats")
        self.assertEqual(ModerationAction.REWRITE_SCOPE, result.action)
        self.assertEqual("Tell me a joke about cats", result.sanitized_prompt)

    def test_safety_wins_over_scope(self) -> None:
        result = moderate_prompt("tell me a joke about malware")
        self.assertEqual(ModerationAction.REWRITE_SAFETY, result.action)

    def test_prompt_is_truncated_and_null_bytes_removed(self) -> None:
        result = moderate_prompt("a\x00b" + "x" * (MAX_PROMPT_CHARS + 100))
        self.assertEqual(ModerationAction.ALLOW, result.action)
        self.assertEqual(MAX_PROMPT_CHARS, len(result.sanitized_prompt))
        self.assertTrue(result.sanitized_prompt.startswith("abx"))


if __name__ == "__main__":
    unittest.main()
