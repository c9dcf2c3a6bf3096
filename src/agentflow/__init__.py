"""agentflow - compiler for agentic workflow definitions."""

from importlib.metadata import version

try:
    __version__ = version("agentflow")
except Exception:
    __version__ = "0.0.0-dev"
