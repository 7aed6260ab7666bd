from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Optional

import structlog
import uvicorn
from playwright.async_api import async_playwright

from .channel import SignalChannel
from .config import TesterConfig, load_config
from .orchestrator import BrowserState, Orchestrator
from .rpc import HttpHostRPC, RecordingHostRPC
from .sandbox.playwright_pages import PlaywrightSandboxFactory
from .server import create_app

logger = structlog.get_logger(__name__)


def configure_logging(verbose: bool = False) -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(10 if verbose else 20),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _headless_config(cfg: TesterConfig) -> TesterConfig:
    # There is no tester UI to mount a container from the command line.
    if cfg.browser.ui:
        logger.warning("Tester UI mode is not available here, running headless sandboxes")
        cfg = cfg.model_copy(update={"browser": cfg.browser.model_copy(update={"ui": False})})
    return cfg


def _host_rpc(host_url: Optional[str]):
    if host_url:
        return HttpHostRPC(host_url, token=(os.getenv("TESTER_HOST_TOKEN") or "").strip())
    return RecordingHostRPC()


async def run_files(cfg: TesterConfig, files: list[str], base_url: str, host_url: Optional[str]) -> int:
    cfg = _headless_config(cfg)
    rpc = _host_rpc(host_url)
    channel = SignalChannel()
    factory = PlaywrightSandboxFactory(channel, base_url, cfg.base_path)

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=cfg.browser.headless)
        context = await browser.new_context()
        orchestrator = Orchestrator(
            cfg, factory, rpc, container=context, channel=channel, state=BrowserState(files=files)
        )
        try:
            async with orchestrator:
                await orchestrator.wait_finished()
        finally:
            await context.close()
            await browser.close()
            if isinstance(rpc, HttpHostRPC):
                await rpc.aclose()

    if isinstance(rpc, RecordingHostRPC):
        for error, error_type in rpc.errors:
            print(f"- {error_type}: {error}")
        return 1 if rpc.errors else 0
    return 0


def serve(cfg: TesterConfig, base_url: str, host_url: Optional[str], host: str, port: int) -> None:
    cfg = _headless_config(cfg)
    app = create_app()
    resources: dict = {}

    @app.on_event("startup")
    async def _startup() -> None:
        rpc = _host_rpc(host_url)
        channel = SignalChannel()
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(headless=cfg.browser.headless)
        context = await browser.new_context()
        orchestrator = Orchestrator(
            cfg, PlaywrightSandboxFactory(channel, base_url, cfg.base_path), rpc,
            container=context, channel=channel,
        )
        await orchestrator.open()
        resources.update(playwright=playwright, browser=browser, context=context, rpc=rpc)
        app.state.orchestrator = orchestrator
        logger.info("Browser tester started", base_url=base_url)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        orchestrator = app.state.orchestrator
        if orchestrator is not None:
            await orchestrator.close()
        if resources:
            await resources["context"].close()
            await resources["browser"].close()
            await resources["playwright"].stop()
            if isinstance(resources["rpc"], HttpHostRPC):
                await resources["rpc"].aclose()
        logger.info("Browser tester stopped")

    uvicorn.run(app, host=host, port=port, log_level="info")


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Run test files in browser sandboxes")
    ap.add_argument("--config", default=None, help="YAML config (default: $TESTER_CONFIG or config/tester.yaml)")
    ap.add_argument("--base-url", default=os.getenv("TESTER_BASE_URL", "http://127.0.0.1:63315"))
    ap.add_argument("--host-url", default=os.getenv("TESTER_HOST_URL"), help="Host RPC endpoint")
    ap.add_argument("--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Run files once and exit")
    run_p.add_argument("files", nargs="+")
    run_p.add_argument("--no-isolate", action="store_true", help="Run every file in one shared sandbox")

    serve_p = sub.add_parser("serve", help="Serve the control API")
    serve_p.add_argument("--host", default=os.getenv("TESTER_HOST", "127.0.0.1"))
    serve_p.add_argument("--port", type=int, default=int(os.getenv("TESTER_PORT", "8123")))

    args = ap.parse_args(argv)
    configure_logging(args.verbose)
    cfg = load_config(args.config)

    if args.command == "run":
        if args.no_isolate:
            cfg = cfg.model_copy(update={"isolate": False})
        return asyncio.run(run_files(cfg, list(args.files), args.base_url, args.host_url))

    serve(cfg, args.base_url, args.host_url, args.host, args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
