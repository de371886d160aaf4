import unittest

from campaign_assistant.template_catalog import find_template, find_template_in_text
from campaign_assistant.tool_executor import (
    ASK_CAMPAIGN_TYPE_TEXT,
    DEFAULT_TOOL_TEXT,
    MAX_SCHEDULE_CHARS,
    MAX_TEMPLATE_SUGGESTIONS,
    ToolInvocation,
    coerce_schedule,
    coerce_smtp_source,
    create_campaign_id,
    execute_tool,
    parse_recipients,
    rank_templates,
)
from campaign_assistant.workflow_types import RecipientStats


class RecipientParsingTests(unittest.TestCase):
    def test_duplicates_and_invalid_entries(self) -> None:
        stats = parse_recipients("a@b.com, a@b.com, bad, c@d.com")
        self.assertEqual(RecipientStats(total=3, valid=2, invalid=1, duplicates=1), stats)
        self.assertEqual(stats.total, stats.valid + stats.invalid)

    def test_duplicates_are_case_insensitive_across_separators(self) -> None:
        stats = parse_recipients("Ann@Example.com;ann@example.com\nbob@example.com,,")
        self.assertEqual(RecipientStats(total=2, valid=2, invalid=0, duplicates=1), stats)

    def test_empty_input(self) -> None:
        self.assertEqual(RecipientStats(total=0, valid=0, invalid=0, duplicates=0), parse_recipients(""))


class TemplateRankingTests(unittest.TestCase):
    def test_best_match_first_and_capped(self) -> None:
        ranked = rank_templates("newsletter for my sushi restaurant", "free")
        self.assertLessEqual(len(ranked), MAX_TEMPLATE_SUGGESTIONS)
        self.assertEqual("sushi-omakase-signature", ranked[0].id)

    def test_free_plan_never_sees_pro_templates(self) -> None:
        ranked = rank_templates("", None)
        ids = [t.id for t in ranked]
        self.assertEqual(
            ["sushi-omakase-signature", "burger-street-social", "vegan-garden-journal", "saas-growth-launchpad"],
            ids,
        )
        for suggestion in ranked:
            self.assertEqual("free", find_template(suggestion.id).access_tier)

    def test_paid_plan_keeps_catalog_order_on_ties(self) -> None:
        ids = [t.id for t in rank_templates("", "pro")]
        self.assertEqual(
            ["sushi-omakase-signature", "burger-street-social", "vegan-garden-journal", "fine-cuisine-grand-soiree"],
            ids,
        )

    def test_price_threshold_sets_pro_tier(self) -> None:
        self.assertEqual("pro", find_template("fine-cuisine-grand-soiree").access_tier)
        self.assertEqual("free", find_template("saas-growth-launchpad").access_tier)
        self.assertEqual("free", find_template("clinic-care-update").access_tier)

    def test_find_template_in_text(self) -> None:
        self.assertEqual("vegan-garden-journal", find_template_in_text("use VEGAN-GARDEN-JOURNAL please").id)
        self.assertIsNone(find_template_in_text("no template here"))


class ExecuteToolTests(unittest.TestCase):
    def test_ask_campaign_type(self) -> None:
        result = execute_tool(ToolInvocation(tool="ask_campaign_type"))
        self.assertEqual(ASK_CAMPAIGN_TYPE_TEXT, result.text)

    def test_suggest_templates_uses_goal_when_query_missing(self) -> None:
        result = execute_tool(ToolInvocation(tool="suggest_templates", context={"goal": "sushi tasting night"}))
        self.assertEqual("sushi-omakase-signature", result.template_suggestions[0].id)

    def test_select_pro_template_on_free_plan_is_refused(self) -> None:
        result = execute_tool(
            ToolInvocation(tool="select_template", args={"templateId": "fine-cuisine-grand-soiree"}, user_plan="free")
        )
        self.assertIsNone(result.selected_template_id)
        self.assertIn("Pro template", result.text)

    def test_select_template_accepts_snake_case_arg(self) -> None:
        result = execute_tool(
            ToolInvocation(tool="select_template", args={"template_id": "fine-cuisine-grand-soiree"}, user_plan="pro")
        )
        self.assertEqual("fine-cuisine-grand-soiree", result.selected_template_id)

    def test_select_unknown_template(self) -> None:
        result = execute_tool(ToolInvocation(tool="select_template", args={"templateId": "nope"}))
        self.assertIsNone(result.selected_template_id)
        self.assertIn("could not find", result.text)

    def test_validate_recipients_reports_stats(self) -> None:
        result = execute_tool(
            ToolInvocation(tool="validate_recipients", args={"recipients": "a@b.com, a@b.com, bad, c@d.com"})
        )
        self.assertEqual("Validation complete: 2 valid, 1 invalid, 1 duplicates.", result.text)
        self.assertEqual(3, result.recipient_stats.total)

    def test_review_names_selected_template(self) -> None:
        result = execute_tool(ToolInvocation(tool="review_campaign", selected_template_id="vegan-garden-journal"))
        self.assertIn("Vegan Garden Journal configured", result.text)

    def test_confirm_queue_campaign(self) -> None:
        result = execute_tool(
            ToolInvocation(
                tool="confirm_queue_campaign",
                args={"smtpSource": "dedicated", "scheduledAt": "2026-11-01T09:00:00Z"},
            ),
            clock_ms=lambda: 1700000123456,
        )
        self.assertEqual("cmp-00123456", result.campaign_id)
        self.assertIn("scheduled for 2026-11-01T09:00:00Z via dedicated SMTP", result.text)

    def test_confirm_defaults_to_platform_smtp(self) -> None:
        result = execute_tool(ToolInvocation(tool="confirm_queue_campaign"), clock_ms=lambda: 42)
        self.assertEqual("cmp-42", result.campaign_id)
        self.assertIn("queued for immediate delivery via platform SMTP", result.text)

    def test_confirm_ignores_malformed_delivery_args(self) -> None:
        result = execute_tool(
            ToolInvocation(
                tool="confirm_queue_campaign",
                args={"smtpSource": ["user"], "scheduledAt": {"date": "2026-10-20"}},
            ),
            clock_ms=lambda: 7,
        )
        self.assertEqual("platform", result.smtp_source)
        self.assertIsNone(result.scheduled_at)
        self.assertIn("queued for immediate delivery via platform SMTP", result.text)

    def test_confirm_normalizes_delivery_args(self) -> None:
        result = execute_tool(
            ToolInvocation(
                tool="confirm_queue_campaign",
                args={"smtp_source": " USER ", "scheduled_at": "  tomorrow 9am  "},
            ),
            clock_ms=lambda: 7,
        )
        self.assertEqual("user", result.smtp_source)
        self.assertEqual("tomorrow 9am", result.scheduled_at)
        self.assertIn("scheduled for tomorrow 9am via your custom SMTP", result.text)
        payload = result.to_dict()
        self.assertEqual("user", payload["smtp_source"])
        self.assertEqual("tomorrow 9am", payload["scheduled_at"])

    def test_delivery_arg_coercion(self) -> None:
        self.assertEqual("platform", coerce_smtp_source("evil"))
        self.assertEqual("platform", coerce_smtp_source(None))
        self.assertEqual("dedicated", coerce_smtp_source("Dedicated"))
        self.assertIsNone(coerce_schedule(1700000000))
        self.assertIsNone(coerce_schedule("   "))
        self.assertIsNone(coerce_schedule("x" * (MAX_SCHEDULE_CHARS + 1)))
        self.assertEqual("2026-11-01T09:00:00Z", coerce_schedule("2026-11-01T09:00:00Z"))

    def test_unknown_tool_gets_default_text(self) -> None:
        self.assertEqual(DEFAULT_TOOL_TEXT, execute_tool(ToolInvocation(tool="compose_simple_email")).text)

    def test_campaign_id_format(self) -> None:
        self.assertRegex(create_campaign_id(), r"^cmp-\d{1,8}$")


if __name__ == "__main__":
    unittest.main()
