"""
Tests for the casededup command-line interface.
"""

import json
import os

import pytest
from click.testing import CliRunner

from casededup import __version__
from casededup.cli import main
from casededup.store.json_store import JsonSessionStore

from conftest import make_raw


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("CASEDEDUP_"):
            monkeypatch.delenv(name)
    return tmp_path


def write_batch(path, records):
    path.write_text(json.dumps(records), encoding="utf-8")
    return path


def invoke(runner, workspace, *args):
    store = workspace / "store.json"
    config = workspace / "missing.yml"
    return runner.invoke(main, ["--store", str(store), "--config", str(config), *args], catch_exceptions=False)


class TestIngestCommand:

    def test_ingest_json(self, runner, workspace, distinct_raw_batch):
        batch = write_batch(workspace / "batch.json", distinct_raw_batch)
        result = invoke(runner, workspace, "ingest", str(batch), "--project-id", "proj-1", "--json")

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["saved"] == 5
        assert payload["sessionId"].startswith("session_")

        sessions = JsonSessionStore(workspace / "store.json").list_sessions()
        assert sessions[0].document_names == ["batch.json"]

    def test_reingest_is_idempotent(self, runner, workspace, distinct_raw_batch):
        batch = write_batch(workspace / "batch.json", distinct_raw_batch)
        invoke(runner, workspace, "ingest", str(batch), "--project-id", "proj-1", "--json")
        result = invoke(runner, workspace, "ingest", str(batch), "--project-id", "proj-1", "--json")

        payload = json.loads(result.output)
        assert payload["saved"] == 0
        assert payload["exactDuplicates"] == 5
        assert payload["sessionId"] == "no-new-cases"

    def test_wrapped_input(self, runner, workspace, distinct_raw_batch):
        batch = write_batch(workspace / "batch.json", {"testCases": distinct_raw_batch[:2]})
        result = invoke(runner, workspace, "ingest", str(batch), "--json")
        assert json.loads(result.output)["saved"] == 2

    def test_table_output(self, runner, workspace, distinct_raw_batch):
        batch = write_batch(workspace / "batch.json", distinct_raw_batch)
        result = invoke(runner, workspace, "ingest", str(batch))
        assert result.exit_code == 0
        assert "Saved" in result.output
        assert "Session" in result.output

    def test_invalid_input(self, runner, workspace):
        bad = workspace / "bad.json"
        bad.write_text("{oops", encoding="utf-8")
        result = invoke(runner, workspace, "ingest", str(bad))
        assert result.exit_code != 0
        assert "not valid JSON" in result.output

    def test_corrupt_store(self, runner, workspace, distinct_raw_batch):
        (workspace / "store.json").write_text("[{", encoding="utf-8")
        batch = write_batch(workspace / "batch.json", distinct_raw_batch)
        result = invoke(runner, workspace, "ingest", str(batch))
        assert result.exit_code == 1


class TestReconcileCommands:

    def setup_method(self):
        self.variants = [
            make_raw(f"Checkout with a saved card{p}", ["Add an item", "Pay with the saved card"], module="Checkout")
            for p in ["", "!", "."]
        ]

    def _seed(self, runner, workspace):
        # Ingest one by one so the variants are stored as separate records
        store = JsonSessionStore(workspace / "store.json")
        for i, raw in enumerate(self.variants):
            batch = write_batch(workspace / f"b{i}.json", [raw])
            invoke(runner, workspace, "ingest", str(batch), "--project-id", "proj-1", "--json")
        return store

    def test_preview_then_reconcile(self, runner, workspace):
        store = self._seed(runner, workspace)
        stored = store.read_all("proj-1")
        # punctuated titles go to review, so only the first variant is stored
        assert len(stored) == 1

        extra = stored[0].clone()
        extra.id = "TC-EXTRA"
        extra.title = extra.title + "!"
        store.write_all("proj-1", stored + [extra])

        preview = invoke(runner, workspace, "preview", "--project-id", "proj-1", "--json")
        assert json.loads(preview.output)["totalWouldRemove"] == 1
        assert len(store.read_all("proj-1")) == 2

        result = invoke(runner, workspace, "reconcile", "--project-id", "proj-1", "--json")
        payload = json.loads(result.output)
        assert payload["casesRemoved"] == 1
        assert len(store.read_all("proj-1")) == 1

    def test_reconcile_confirmation_declined(self, runner, workspace):
        store = self._seed(runner, workspace)
        stored = store.read_all("proj-1")
        twin = stored[0].clone()
        twin.id = "TC-TWIN"
        store.write_all("proj-1", stored + [twin])

        result = runner.invoke(
            main,
            ["--store", str(workspace / "store.json"), "--config", str(workspace / "missing.yml"),
             "reconcile", "--project-id", "proj-1"],
            input="n\n",
        )
        assert "Aborted" in result.output
        assert len(store.read_all("proj-1")) == 2

    def test_backfill_and_stats(self, runner, workspace):
        store = self._seed(runner, workspace)
        stored = store.read_all("proj-1")
        twin = stored[0].clone()
        twin.id = "TC-TWIN"
        for record in (stored[0], twin):
            record.dedup.simhash = ""
        store.write_all("proj-1", [stored[0], twin])

        backfill = invoke(runner, workspace, "backfill", "--json")
        assert json.loads(backfill.output) == {"updated": 2}

        stats = invoke(runner, workspace, "stats", "--project-id", "proj-1", "--json")
        assert json.loads(stats.output) == {
            "totalCases": 2,
            "withSimhash": 2,
            "potentialDuplicates": 1,
            "estimatedSavings": 50,
        }


class TestConfigCommands:

    def test_init_show_validate(self, runner, workspace):
        result = runner.invoke(main, ["config", "init", "--path", "custom.yml"])
        assert result.exit_code == 0
        assert (workspace / "custom.yml").exists()

        result = runner.invoke(main, ["--config", "custom.yml", "config", "show"])
        assert result.exit_code == 0
        assert "hamming_threshold" in result.output

        result = runner.invoke(main, ["--config", "custom.yml", "config", "validate"])
        assert result.exit_code == 0
        assert "valid" in result.output

    def test_validate_rejects_bad_file(self, runner, workspace):
        (workspace / "bad.yml").write_text("simhash_bits: 12\n", encoding="utf-8")
        result = runner.invoke(main, ["--config", "bad.yml", "config", "validate"])
        assert result.exit_code == 1

    def test_init_refuses_overwrite(self, runner, workspace):
        (workspace / "custom.yml").write_text("hamming_threshold: 2\n", encoding="utf-8")
        result = runner.invoke(main, ["config", "init", "--path", "custom.yml"], input="n\n")
        assert "Aborted" in result.output
        assert (workspace / "custom.yml").read_text(encoding="utf-8") == "hamming_threshold: 2\n"


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert __version__ in result.output
