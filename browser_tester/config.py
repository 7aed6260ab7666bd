"""Configuration management for the browser tester."""

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field


class ViewportConfig(BaseModel):
    """Sandbox viewport applied to every sandbox of a run."""
    width: int = Field(default=414, description="Viewport width in pixels")
    height: int = Field(default=896, description="Viewport height in pixels")


class BrowserConfig(BaseModel):
    """Browser specific configuration."""
    ui: bool = Field(default=False, description="Sandboxes are hosted inside the tester UI")
    headless: bool = Field(default=True, description="Run browser in headless mode")
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)


class TesterConfig(BaseModel):
    """Main configuration for the browser tester."""

    # Project settings
    name: str = Field(default="", description="Project name, part of the UI file id")
    root: str = Field(default=".", description="Project root used to relativize test files")

    # Run policy
    isolate: bool = Field(default=True, description="One sandbox per file, created strictly in order")
    base_path: str = Field(default="/", description="Path the tester page is served from")
    sandbox_timeout: Optional[float] = Field(
        default=None, description="Seconds a sandbox may stay silent before it is expired"
    )

    # Environment forwarded to the orchestrator (debug flags)
    env: Dict[str, str] = Field(default_factory=dict, description="Tester environment variables")

    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    @property
    def debug_enabled(self) -> bool:
        flag = self.env.get("TESTER_BROWSER_DEBUG")
        return bool(flag) and flag != "false"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def load_config(config_path: Optional[str] = None) -> TesterConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("TESTER_CONFIG", "config/tester.yaml")

    config_data = {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    browser = dict(config_data.get("browser") or {})
    env = {str(k): str(v) for k, v in (config_data.get("env") or {}).items()}

    isolate = os.getenv("TESTER_ISOLATE")
    if isolate is not None:
        config_data["isolate"] = _as_bool(isolate)

    timeout = os.getenv("TESTER_SANDBOX_TIMEOUT")
    if timeout is not None:
        config_data["sandbox_timeout"] = float(timeout) if timeout.strip() else None

    ui = os.getenv("TESTER_UI")
    if ui is not None:
        browser["ui"] = _as_bool(ui)

    headless = os.getenv("TESTER_HEADLESS")
    if headless is not None:
        browser["headless"] = _as_bool(headless)

    debug = os.getenv("TESTER_BROWSER_DEBUG")
    if debug is not None:
        env["TESTER_BROWSER_DEBUG"] = debug

    config_data["browser"] = browser
    config_data["env"] = env
    return TesterConfig(**config_data)
