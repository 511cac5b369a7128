"""Shared test fixtures for docat tests."""

import pytest

import docat_log


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Point the global configuration at a per-test directory and keep output quiet."""
    monkeypatch.setenv("DOCAT_CONFIG_DIR", str(tmp_path / "docat-config"))
    docat_log.set_verbosity(False)
    yield
    docat_log.set_verbosity(False)


class FakeChatModel:
    """Stands in for OpenAIChatModel / LocalChatModel; records every request."""

    def __init__(self, reply="Adds two numbers.", exc=None):
        self.reply = reply
        self.exc = exc
        self.calls = []

    def generate(self, messages, *, cfg=None):
        self.calls.append((messages, cfg))
        if self.exc is not None:
            raise self.exc
        return self.reply


@pytest.fixture
def make_llm():
    """Factory for fake chat models, e.g. `make_llm(reply="")` for an empty completion."""
    return FakeChatModel
