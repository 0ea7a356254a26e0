"""Dramatiq broker detection for the mirror actors.

:mod:`ferryman.actors` calls :func:`ensure_broker_configured` before it
declares its actors and again whenever an actor body runs. Outside tests a
real broker must already be importable; a stub broker is only installed
under pytest or when ``FERRYMAN_ALLOW_STUB_BROKER`` is set.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

_BROKER_LOCK = threading.Lock()
_broker_configured = False
_TRUTHY = frozenset({"1", "true", "yes"})


def _is_running_tests() -> bool:
    return "pytest" in sys.modules or any(
        key in os.environ
        for key in ("PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS")
    )


def _should_use_stub_broker() -> bool:
    """Return True when ``FERRYMAN_ALLOW_STUB_BROKER`` is truthy or under pytest."""
    allow_stub = os.environ.get("FERRYMAN_ALLOW_STUB_BROKER", "")
    return allow_stub.strip().lower() in _TRUTHY or _is_running_tests()


def ensure_broker_configured() -> None:
    """Make sure a Dramatiq broker exists before an actor body runs.

    Idempotent and safe to call from several worker threads at once.

    Raises
    ------
    RuntimeError
        If no broker is configured outside a test or stub-allowed context.

    """
    global _broker_configured  # noqa: PLW0603

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:  # pragma: no cover - exercised in tests and worker startup
            current_broker = dramatiq.get_broker()
        except (ImportError, LookupError):
            # ImportError: the default RabbitMQ broker's client is not installed
            current_broker = None

        if current_broker is None:
            if _should_use_stub_broker():
                dramatiq.set_broker(StubBroker())
            else:  # pragma: no cover - production misconfiguration
                message = (
                    "No Dramatiq broker configured. "
                    "Set FERRYMAN_ALLOW_STUB_BROKER=1 for "
                    "local/test runs or configure a real broker."
                )
                raise RuntimeError(message)

        _broker_configured = True
