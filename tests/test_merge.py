"""
Tests for the field-level merge rules and the auto-merge guard.
"""

from datetime import datetime, timezone

import pytest

from casededup.core.ranks import Priority, Status, priority_rank, status_rank
from casededup.core.types import Step, TestCaseRecord
from casededup.engine.merge import combine_text, is_safe_merge, merge, merge_steps, union_tags

from conftest import make_record

NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


class TestRanks:

    def test_priority_order(self):
        assert priority_rank("Critical") < priority_rank("High") < priority_rank("Medium") < priority_rank("Low")

    def test_aliases(self):
        assert Priority.parse("P1") is Priority.HIGH
        assert Status.parse("Not Run") is Status.NOT_RUN
        assert Status.parse("not_run") is Status.NOT_RUN

    def test_unknown_ranks_last(self):
        assert priority_rank("urgent-ish") == len(Priority)
        assert status_rank(None) == len(Status)

    def test_more_severe(self):
        assert Priority.more_severe("Medium", "High") == "High"
        assert Priority.more_severe("High", "Medium") == "High"
        assert Priority.more_severe("", "Low") == "Low"
        assert Priority.more_severe("Low", "") == "Low"
        assert Status.more_severe("Passed", "Failed") == "Failed"


class TestTextHelpers:

    def test_combine_text(self):
        assert combine_text("Flaky on CI", "Needs VPN") == "Flaky on CI | Needs VPN"

    def test_combine_text_deduplicates_segments(self):
        assert combine_text("Flaky on CI | Needs VPN", "needs vpn") == "Flaky on CI | Needs VPN"

    def test_combine_text_empty_sides(self):
        assert combine_text("", "Only incoming") == "Only incoming"
        assert combine_text("Only base", "  ") == "Only base"
        assert combine_text("", "") == ""

    def test_union_tags(self):
        assert union_tags(["smoke", "auth"], ["auth", "regression"]) == ["smoke", "auth", "regression"]


class TestMergeSteps:

    def test_appends_unseen_steps(self):
        base = [Step("Open page", number=1), Step("Log in", number=2)]
        incoming = [Step("open  PAGE"), Step("Check banner")]
        steps, added, modified = merge_steps(base, incoming)
        assert [s.action for s in steps] == ["Open page", "Log in", "Check banner"]
        assert steps[-1].number == 3
        assert (added, modified) == (1, 0)

    def test_fills_blanks_on_matching_step(self):
        base = [Step("Open page", number=1)]
        incoming = [Step("Open page", expected_result="Page loads", test_data="url")]
        steps, added, modified = merge_steps(base, incoming)
        assert steps[0].expected_result == "Page loads"
        assert steps[0].test_data == "url"
        assert (added, modified) == (0, 1)

    def test_does_not_overwrite(self):
        base = [Step("Open page", expected_result="Loads", number=1)]
        steps, _, modified = merge_steps(base, [Step("Open page", expected_result="Renders")])
        assert steps[0].expected_result == "Loads"
        assert modified == 0

    def test_inputs_untouched(self):
        base = [Step("Open page", number=1)]
        merge_steps(base, [Step("Open page", expected_result="Loads")])
        assert base[0].expected_result == ""


class TestMerge:
    """Test merging two records."""

    def setup_method(self):
        self.base = make_record(
            "Login works", ["Open page", "Log in"],
            record_id="TC-BASE", priority="Medium", status="Passed",
            remarks="Seen on staging", tags=["smoke"],
        )
        self.base.created_by = "alice"
        self.incoming = make_record(
            "Login works with SSO", ["Open page", "Choose SSO"],
            record_id="TC-NEW", priority="High", status="Failed",
            remarks="Seen on prod", tags=["sso"], expectedResult="Dashboard",
        )

    def test_identity_comes_from_base(self):
        merged = merge(self.base, self.incoming, NOW).merged_case
        assert merged.id == "TC-BASE"
        assert merged.created_at == self.base.created_at
        assert merged.created_by == "alice"
        assert merged.updated_at == NOW
        assert merged.version == self.base.version + 1

    def test_field_rules(self):
        merged = merge(self.base, self.incoming, NOW).merged_case
        assert merged.title == "Login works with SSO"
        assert merged.remarks == "Seen on staging | Seen on prod"
        assert merged.expected_result == "Dashboard"
        assert merged.tags == ["smoke", "sso"]
        assert [s.action for s in merged.steps] == ["Open page", "Log in", "Choose SSO"]

    def test_more_severe_wins(self):
        result = merge(self.base, self.incoming, NOW)
        assert result.merged_case.priority == "High"
        assert result.merged_case.status == "Failed"
        assert result.changes.priority_changed
        assert result.changes.status_changed
        assert {c.field for c in result.conflicts} == {"priority", "status"}
        assert all(c.resolution == "used_incoming" for c in result.conflicts)

    def test_less_severe_incoming_does_not_downgrade(self):
        result = merge(self.incoming, self.base, NOW)
        assert result.merged_case.priority == "High"
        assert result.merged_case.status == "Failed"
        assert not result.changes.priority_changed
        assert result.conflicts == []

    def test_changes_summary(self):
        changes = merge(self.base, self.incoming, NOW).changes
        assert changes.steps_added == 1
        assert {"title", "priority", "status", "remarks", "tags", "steps", "expected_result"} <= set(
            changes.fields_modified
        )
        assert "module" not in changes.fields_modified

    def test_inputs_not_mutated(self):
        before_base = self.base.to_dict()
        before_incoming = self.incoming.to_dict()
        merge(self.base, self.incoming, NOW)
        assert self.base.to_dict() == before_base
        assert self.incoming.to_dict() == before_incoming

    def test_hashes_reset(self):
        merged = merge(self.base, self.incoming, NOW).merged_case
        assert merged.dedup.fingerprint == ""
        assert merged.dedup.simhash == ""

    def test_deterministic(self):
        first = merge(self.base, self.incoming, NOW).to_dict()
        second = merge(self.base, self.incoming, NOW).to_dict()
        assert first == second

    def test_empty_base_fields_filled(self):
        base = TestCaseRecord(id="TC-1", title="Login")
        incoming = TestCaseRecord(title="Login", module="Auth", priority="Low", test_data="user1")
        result = merge(base, incoming, NOW)
        assert result.merged_case.module == "Auth"
        assert result.merged_case.priority == "Low"
        assert result.merged_case.test_data == "user1"
        # base had no priority, so nothing was overridden
        assert result.conflicts == []


class TestSafeMerge:

    def test_same_title_and_module(self):
        a = make_record("Login works", ["Open page"], priority="High")
        b = make_record("  login WORKS ", ["Open page"], priority="Medium")
        assert is_safe_merge(a, b)

    def test_different_module(self):
        a = make_record("Login works", ["Open page"], module="Auth")
        b = make_record("Login works", ["Open page"], module="Admin")
        assert not is_safe_merge(a, b)

    def test_different_title(self):
        a = make_record("Login works", ["Open page"])
        b = make_record("Login works!", ["Open page"])
        assert not is_safe_merge(a, b)

    @pytest.mark.parametrize("incoming,allowed", [
        ("Critical", True),
        ("High", True),
        ("Medium", True),
        ("Low", False),
    ])
    def test_priority_gap(self, incoming, allowed):
        a = make_record("Login works", ["Open page"], priority="High")
        b = make_record("Login works", ["Open page"], priority=incoming)
        assert is_safe_merge(a, b) is allowed

    def test_missing_priority_is_not_a_gap(self):
        a = make_record("Login works", ["Open page"], priority="Critical")
        b = make_record("Login works", ["Open page"], priority="")
        assert is_safe_merge(a, b)
