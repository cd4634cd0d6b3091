"""
Shared fixtures for the casededup test suite.
"""

import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from casededup.core.types import TestCaseRecord
from casededup.engine.ingest import attach_metadata
from casededup.store.memory import InMemoryRecordStore
from casededup.utils.logging_setup import ROOT_LOGGER

BASE_TIME = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


def make_raw(title: str, steps: List[str], module: str = "Auth", **fields: Any) -> Dict[str, Any]:
    """A generator-shaped record dict."""
    raw: Dict[str, Any] = {
        "testCase": title,
        "module": module,
        "priority": fields.pop("priority", "Medium"),
        "status": fields.pop("status", "Not Run"),
        "testSteps": [
            {"step": i + 1, "description": action, "testData": "", "expectedResult": ""}
            for i, action in enumerate(steps)
        ],
    }
    raw.update(fields)
    return raw


def make_record(title: str, steps: List[str], module: str = "Auth",
                record_id: Optional[str] = None, minutes: int = 0,
                project_id: Optional[str] = "proj-1", **fields: Any) -> TestCaseRecord:
    """A stored record with dedup metadata attached."""
    record = TestCaseRecord.from_dict(make_raw(title, steps, module, **fields))
    record.id = record_id or f"TC-{next(_ids):04d}"
    record.project_id = project_id
    record.created_at = BASE_TIME + timedelta(minutes=minutes)
    record.updated_at = record.created_at
    return attach_metadata(record)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """The CLI reconfigures the package logger; undo that between tests."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def login_record():
    return make_record(
        "User can log in with valid credentials",
        ["Open the login page", "Enter a valid username and password", "Click Sign in"],
        record_id="TC-LOGIN",
    )


@pytest.fixture
def reset_record():
    return make_record(
        "User can reset password via email",
        ["Open the forgot password page", "Submit the registered email", "Follow the reset link"],
        record_id="TC-RESET",
        minutes=1,
    )


@pytest.fixture
def store(login_record, reset_record):
    return InMemoryRecordStore([login_record, reset_record])


@pytest.fixture
def distinct_raw_batch():
    """Five generator records with no meaningful overlap."""
    return [
        make_raw("Search returns matching products", ["Type a product name", "Press enter"], module="Catalog"),
        make_raw("Cart total updates after removal", ["Add two items", "Remove one item"], module="Cart"),
        make_raw("Invoice PDF downloads", ["Open order history", "Download the invoice"], module="Billing"),
        make_raw("Profile avatar upload rejects large files", ["Choose a 20MB image", "Upload"], module="Profile"),
        make_raw("Admin can deactivate a user", ["Open user list", "Deactivate account"], module="Admin"),
    ]
