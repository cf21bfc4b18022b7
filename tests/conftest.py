"""Shared test fixtures for time machine tests."""

import pytest

from fakes import make_facts
from timemachine.core.config import TimeMachineConfig
from timemachine.tools.credentials import CredentialStore


@pytest.fixture()
def fast_cfg():
    """Config with every delay shrunk so playback and retries run in milliseconds."""
    return TimeMachineConfig(
        backoff_base_s=0.0,
        backoff_max_s=0.0,
        retry_delay_s=0.0,
        settle_delay_s=0.01,
        rotate_interval_s=0.02,
        post_narration_pause_s=0.01,
        utterance_timeout_s=0.2,
        keep_alive_s=0.02,
    )


@pytest.fixture()
def store(tmp_path, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    s = CredentialStore(path=tmp_path / "credentials.json")
    s.set("test-key")
    return s


@pytest.fixture()
def facts():
    return make_facts()


@pytest.fixture()
def make_script(tmp_path):
    """Executable /bin/sh script standing in for a player or speech engine."""

    def make(name, body):
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(0o755)
        return str(path)

    return make
