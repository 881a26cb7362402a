"""Shared fixtures: a migrated store and per-session operations."""

import os

import pytest

from td import features
from td.mutations import Mutator
from td.operations import IssueOperations
from td.storage.sqlite_store import SQLiteStore
from td.workflow import TransitionMode


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(os.path.join(str(tmp_path), "issues.db"))
    yield s
    s.close()


@pytest.fixture
def mutator(store):
    return Mutator(store, "ses_alice")


@pytest.fixture
def ops(store, mutator):
    return IssueOperations(store, mutator)


@pytest.fixture
def other_ops(store):
    """Operations for a second session, used as the reviewer."""
    return IssueOperations(store, Mutator(store, "ses_bob"))


@pytest.fixture
def liberal_ops(store):
    return IssueOperations(store, Mutator(store, "ses_alice"), mode=TransitionMode.LIBERAL)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep user-scope config, sessions and feature caches out of the real home."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for var in ("TD_SESSION_ID", "TD_WORK_DIR", "TD_SYNC_URL", "TD_AUTH_KEY",
                "TD_WEBHOOK_URL", "TD_WEBHOOK_SECRET", "TD_DISABLE_EXPERIMENTAL",
                "TD_ENABLE_FEATURES", "TD_DISABLE_FEATURES", "TD_FEATURE_SYNC_CLI",
                "TD_FEATURE_SYNC_AUTOSYNC", "TD_FEATURE_SYNC_NOTES", "TD_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    features.reset()
    yield
    features.reset()
