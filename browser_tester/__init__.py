"""Sandboxed browser test orchestration."""

from .config import TesterConfig, load_config
from .events import ID_ALL
from .orchestrator import BrowserState, Orchestrator

__all__ = ["BrowserState", "ID_ALL", "Orchestrator", "TesterConfig", "load_config"]
