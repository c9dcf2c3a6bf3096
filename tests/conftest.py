"""Pytest configuration and fixtures for agentflow tests."""

from collections.abc import Callable
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def reset_config_singleton():
    """Reset the config singleton before and after each test."""
    from agentflow.core.config import _reset_config

    _reset_config()
    yield
    _reset_config()


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the global config path at an empty temp location.

    Keeps tests independent of ~/.agentflow/config.yaml on the machine
    running them.
    """
    path = tmp_path / "global-home" / "config.yaml"
    monkeypatch.setattr("agentflow.core.config.GLOBAL_CONFIG_PATH", path)
    return path


@pytest.fixture
def write_workflow(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture writing a workflow file under tmp_path.

    Usage:
        path = write_workflow("triage.md", frontmatter="on: push", body="# Triage\n...")
    """

    def _write(name: str, frontmatter: str | None = None, body: str = "# Workflow\n\nDo the work.\n") -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if frontmatter is None:
            path.write_text(body, encoding="utf-8")
        else:
            path.write_text(f"---\n{frontmatter.strip()}\n---\n{body}", encoding="utf-8")
        return path

    return _write
