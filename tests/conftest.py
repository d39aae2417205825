"""Shared pytest configuration for the project test suite."""
from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path
from typing import Generator

import pytest
from aiohttp import web


# Ensure the repository root (which contains the ``budget_pulse`` package) is importable.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

MOCK_API_KEY = "test-api-key-0123456789"


@pytest.fixture(scope="session")
def mock_api_base_url() -> Generator[str, None, None]:
    """Boot the mock Budget API on ``127.0.0.1`` in a background thread.

    Yields the ``/v1`` base URL. The server expects ``MOCK_API_KEY`` as the
    bearer token so authentication failures can be exercised too.
    """

    from budget_pulse.mock_api import API_PREFIX, create_app

    loop = asyncio.new_event_loop()
    ready = threading.Event()
    address = {}

    def _run() -> None:
        asyncio.set_event_loop(loop)
        app = create_app(api_key=MOCK_API_KEY)
        runner = web.AppRunner(app)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, host="127.0.0.1", port=0)
        loop.run_until_complete(site.start())
        sockets = site._server.sockets  # type: ignore[attr-defined]
        assert sockets, "aiohttp site did not expose any sockets"
        address["port"] = sockets[0].getsockname()[1]
        ready.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(runner.cleanup())
            loop.close()

    thread = threading.Thread(target=_run, name="mock-budget-api", daemon=True)
    thread.start()
    if not ready.wait(timeout=10):
        raise RuntimeError("Timed out starting mock Budget API")

    try:
        yield f"http://127.0.0.1:{address['port']}{API_PREFIX}"
    finally:
        if loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=5)


@pytest.fixture(scope="session")
def mock_api_key() -> str:
    return MOCK_API_KEY
