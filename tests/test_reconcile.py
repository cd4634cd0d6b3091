"""
Tests for retroactive batch reconciliation.
"""

from unittest.mock import patch

import pytest

from casededup.core.errors import ReconciliationError, StoreError
from casededup.core.types import TestCaseRecord
from casededup.engine.reconcile import BatchReconciler, select_keeper
from casededup.store.memory import InMemoryRecordStore

from conftest import make_record


def with_hash(record_id, simhash, module="Checkout", steps=1, minutes=0):
    record = make_record(f"Case {record_id}", [f"step {i}" for i in range(steps)], module=module,
                         record_id=record_id, minutes=minutes)
    record.dedup.simhash = str(simhash)
    return record


def checkout_store():
    """Eight punctuation variants of one checkout case plus two unrelated ones."""
    punctuation = [".", "!", "", "?", "...", ";", " !", ":"]
    variants = [
        make_record(
            f"Checkout with a saved card{p}",
            [f"Add an item to the cart{p}", "Open checkout", f"Pay with the saved card{p}"],
            module="Checkout",
            record_id=f"TC-V{i}",
            minutes=10 - i,
        )
        for i, p in enumerate(punctuation)
    ]
    others = [
        make_record("Guest checkout requires an email address before shipping options appear",
                    ["Start checkout as guest", "Skip the email field", "Observe validation error"],
                    module="Checkout", record_id="TC-GUEST"),
        make_record("Coupon codes expire after the campaign end date passes",
                    ["Apply an expired coupon", "Read the rejection banner"],
                    module="Checkout", record_id="TC-COUPON"),
    ]
    return InMemoryRecordStore(variants[:4] + others + variants[4:])


class TestSelectKeeper:

    def test_most_steps_wins(self):
        members = [with_hash("A", 1, steps=1), with_hash("B", 1, steps=3), with_hash("C", 1, steps=2)]
        assert select_keeper(members).id == "B"

    def test_earliest_created_on_tie(self):
        members = [with_hash("A", 1, minutes=5), with_hash("B", 1, minutes=1), with_hash("C", 1, minutes=3)]
        assert select_keeper(members).id == "B"

    def test_missing_timestamp_loses(self):
        a = with_hash("A", 1, minutes=5)
        b = with_hash("B", 1)
        b.created_at = None
        assert select_keeper([b, a]).id == "A"

    def test_position_breaks_full_tie(self):
        members = [with_hash("A", 1), with_hash("B", 1)]
        assert select_keeper(members).id == "A"
        assert select_keeper(list(reversed(members))).id == "B"


class TestFindClusters:
    """Greedy clustering over hand-set hashes."""

    def setup_method(self):
        self.reconciler = BatchReconciler(InMemoryRecordStore())

    def test_within_threshold(self):
        records = [with_hash("A", 0b1111_0000), with_hash("B", 0b1111_0011), with_hash("C", 0b0000_1111)]
        clusters = self.reconciler.find_clusters(records, threshold=4)
        assert len(clusters) == 1
        assert [m.id for m in clusters[0].members] == ["A", "B"]

    def test_greedy_against_seed(self):
        # B is 2 bits from A, C is 2 bits from B but 4 from A
        records = [with_hash("A", 0b0000_0001), with_hash("B", 0b0000_0111), with_hash("C", 0b0001_1111)]
        clusters = self.reconciler.find_clusters(records, threshold=2)
        assert [m.id for m in clusters[0].members] == ["A", "B"]
        assert len(clusters) == 1

    def test_modules_never_mix(self):
        records = [with_hash("A", 99, module="Checkout"), with_hash("B", 99, module="Cart")]
        assert self.reconciler.find_clusters(records) == []

    def test_module_key_is_normalized(self):
        records = [with_hash("A", 99, module="Checkout"), with_hash("B", 99, module="  checkout ")]
        assert len(self.reconciler.find_clusters(records)) == 1

    def test_zero_and_missing_hashes_excluded(self):
        zero = with_hash("Z", 0)
        missing = with_hash("M", 1)
        missing.dedup.simhash = ""
        records = [zero, with_hash("A", 1), missing, TestCaseRecord(id="E", module="Checkout")]
        assert self.reconciler.find_clusters(records) == []

    def test_partition_is_valid(self):
        records = [with_hash(f"R{i}", h) for i, h in enumerate([1, 3, 7, 1 << 40, (1 << 40) | 1, 1 << 60])]
        clusters = self.reconciler.find_clusters(records, threshold=2)

        seen = set()
        for cluster in clusters:
            ids = [m.id for m in cluster.members]
            assert len(ids) >= 2
            assert cluster.keep_id in ids
            assert sorted(cluster.remove_ids) == sorted(set(ids) - {cluster.keep_id})
            assert not seen & set(ids)
            seen.update(ids)

    def test_partition_is_valid_with_shared_ids(self):
        records = [with_hash("TC-001", 1), with_hash("TC-001", 3), with_hash("TC-002", 1 << 40)]
        clusters = self.reconciler.find_clusters(records, threshold=2)

        assert len(clusters) == 1
        cluster = clusters[0]
        assert cluster.keep is records[0]
        assert cluster.removed == [records[1]]
        assert cluster.removed[0] is records[1]
        assert len(cluster.members) - len(cluster.removed) == 1

    def test_uses_configured_threshold(self):
        records = [with_hash("A", 0), with_hash("B", 0b1_1111)]
        records[0].dedup.simhash = str(1 << 10)
        reconciler = BatchReconciler(InMemoryRecordStore())
        reconciler.config.hamming_threshold = 6
        assert len(reconciler.find_clusters(records)) == 1


class TestReconcile:

    def test_checkout_scenario(self):
        store = checkout_store()
        result = BatchReconciler(store).reconcile("proj-1")

        assert result.total_cases == 10
        assert result.duplicate_groups == 1
        assert result.cases_merged == 1
        assert result.cases_removed == 7
        detail = result.details[0]
        # TC-V7 has the earliest created_at among equal step counts
        assert detail.keep_id == "TC-V7"
        assert len(detail.removed_ids) == 7
        assert "Hamming" in detail.reason

        remaining = [r.id for r in store.read_all("proj-1")]
        assert remaining == ["TC-GUEST", "TC-COUPON", "TC-V7"]

    def test_shared_ids_keep_one_record(self):
        first = make_record("Checkout with saved card", ["Add an item", "Pay with the saved card"],
                            module="Checkout", record_id="TC-001")
        second = make_record("Checkout, with saved card!", ["Add an item", "Pay with the saved card"],
                             module="Checkout", record_id="TC-001", minutes=5)
        store = InMemoryRecordStore([first, second])

        result = BatchReconciler(store).reconcile("proj-1")

        assert result.cases_removed == 1
        remaining = store.read_all("proj-1")
        assert len(remaining) == 1
        assert remaining[0].title == "Checkout with saved card"

    def test_keeps_the_record_with_most_steps(self):
        store = InMemoryRecordStore([
            with_hash("A", 1, steps=1, minutes=0),
            with_hash("B", 1, steps=4, minutes=9),
            with_hash("C", 1, steps=2, minutes=1),
        ])
        result = BatchReconciler(store).reconcile("proj-1")
        assert result.details[0].keep_id == "B"
        assert [r.id for r in store.read_all()] == ["B"]

    def test_title_less_record_is_left_alone(self):
        blank = TestCaseRecord.from_dict({"id": "TC-BLANK", "module": "Checkout", "projectId": "proj-1"})
        blank.dedup.simhash = "0"
        twin = blank.clone()
        twin.id = "TC-BLANK-2"
        store = InMemoryRecordStore([blank, twin])

        result = BatchReconciler(store).reconcile("proj-1")

        assert result.duplicate_groups == 0
        assert len(store) == 2

    def test_no_simhash_short_circuits(self):
        record = make_record("Login", ["Open page"])
        record.dedup.simhash = ""
        store = InMemoryRecordStore([record, record.clone()])
        result = BatchReconciler(store).reconcile("proj-1")
        assert result.total_cases == 2
        assert result.stats["withSimhash"] == 0
        assert store.write_count == 0

    def test_other_projects_untouched(self):
        mine = [with_hash("A", 5), with_hash("B", 5)]
        theirs = [with_hash("X", 5), with_hash("Y", 5)]
        for record in theirs:
            record.project_id = "proj-2"
        store = InMemoryRecordStore(mine + theirs)

        BatchReconciler(store).reconcile("proj-1")

        assert [r.id for r in store.read_all("proj-2")] == ["X", "Y"]
        assert [r.id for r in store.read_all("proj-1")] == ["A"]

    def test_all_projects(self):
        a, b = with_hash("A", 5), with_hash("B", 5)
        b.project_id = "proj-2"
        store = InMemoryRecordStore([a, b])
        assert BatchReconciler(store).reconcile().cases_removed == 1

    def test_deterministic(self):
        first = BatchReconciler(checkout_store()).reconcile("proj-1").to_dict()
        second = BatchReconciler(checkout_store()).reconcile("proj-1").to_dict()
        assert first == second

    def test_unexpected_error_wrapped(self):
        store = InMemoryRecordStore([with_hash("A", 5), with_hash("B", 5)])
        reconciler = BatchReconciler(store)
        with patch.object(reconciler, "find_clusters", side_effect=KeyError("boom")):
            with pytest.raises(ReconciliationError) as exc_info:
                reconciler.reconcile("proj-1")
        assert exc_info.value.project_id == "proj-1"

    def test_store_error_propagates(self):
        store = InMemoryRecordStore()
        with patch.object(store, "read_all", side_effect=StoreError("gone", operation="read")):
            with pytest.raises(StoreError):
                BatchReconciler(store).reconcile("proj-1")


class TestPreview:

    def test_preview_is_non_destructive(self):
        store = checkout_store()
        preview = BatchReconciler(store).preview("proj-1")

        assert preview.total_would_remove == 7
        assert len(preview.duplicate_groups) == 1
        assert store.write_count == 0
        assert len(store) == 10

    def test_preview_matches_reconcile(self):
        store = checkout_store()
        reconciler = BatchReconciler(store)
        preview = reconciler.preview("proj-1")
        result = reconciler.reconcile("proj-1")
        assert preview.duplicate_groups[0].keep_id == result.details[0].keep_id
        assert preview.total_would_remove == result.cases_removed

    def test_to_dict(self):
        payload = BatchReconciler(checkout_store()).preview("proj-1").to_dict()
        group = payload["duplicateGroups"][0]
        assert group["keepId"] == "TC-V7"
        assert group["wouldRemove"] == 7
        assert {d["stepCount"] for d in group["duplicates"]} == {3}


class TestBackfillAndStats:

    def test_backfill_fills_missing_only(self):
        fresh = make_record("Login", ["Open page"], record_id="TC-1")
        stale = make_record("Logout", ["Click sign out"], record_id="TC-2")
        stale.dedup.simhash = ""
        original = fresh.dedup.simhash
        store = InMemoryRecordStore([fresh, stale])

        assert BatchReconciler(store).backfill_simhash() == {"updated": 1}

        stored = {r.id: r for r in store.read_all()}
        assert stored["TC-1"].dedup.simhash == original
        assert stored["TC-2"].dedup.simhash.isdigit()

    def test_backfill_noop_does_not_write(self):
        store = InMemoryRecordStore([make_record("Login", ["Open page"])])
        assert BatchReconciler(store).backfill_simhash() == {"updated": 0}
        assert store.write_count == 0

    def test_backfill_then_reconcile(self):
        records = [make_record("Login works", ["Open page"], minutes=i) for i in range(3)]
        for record in records:
            record.dedup.simhash = ""
        store = InMemoryRecordStore(records)
        reconciler = BatchReconciler(store)

        assert reconciler.reconcile("proj-1").cases_removed == 0
        reconciler.backfill_simhash("proj-1")
        assert reconciler.reconcile("proj-1").cases_removed == 2

    def test_stats(self):
        stats = BatchReconciler(checkout_store()).stats("proj-1")
        assert stats == {
            "totalCases": 10,
            "withSimhash": 10,
            "potentialDuplicates": 7,
            "estimatedSavings": 70,
        }

    def test_stats_empty_store(self):
        assert BatchReconciler(InMemoryRecordStore()).stats()["estimatedSavings"] == 0
