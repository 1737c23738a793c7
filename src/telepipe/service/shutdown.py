"""
GracefulShutdown - SIGINT and SIGTERM handling for a clean collector stop.

- First SIGINT (Ctrl+C): flags the shutdown; receivers stop and buffered
  data drains through the pipelines
- Second SIGINT: immediate exit with code 130
- SIGTERM: same as a first SIGINT (for containers and CI)

``Collector.run`` waits on the flag and shuts the pipelines down in order.
"""

import logging
import signal
import sys
import threading

import structlog

from ..logging.human import HumanLog

logger = structlog.get_logger()
_hlog = HumanLog(logging.getLogger("telepipe.service"))

EXIT_INTERRUPTED = 130  # POSIX: 128 + SIGINT(2)


class GracefulShutdown:
    """Tracks shutdown requests for a running collector.

    Attributes:
        should_stop: True once a signal (or ``request``) asked to stop.

    Usage:
        shutdown = GracefulShutdown()
        collector.run(shutdown)
    """

    def __init__(self, install: bool = True) -> None:
        """Install the signal handlers (unless ``install`` is False)."""
        self._event = threading.Event()
        self._interrupted = False
        self._installed = False

        if install:
            signal.signal(signal.SIGINT, self._handler)
            signal.signal(signal.SIGTERM, self._handler)
            self._installed = True
            logger.debug("graceful_shutdown.installed")

    def _handler(self, signum: int, frame) -> None:
        """Shared SIGINT/SIGTERM handler.

        First time: flag and warn. Second time: exit now.
        """
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"

        if self._interrupted:
            logger.warning("graceful_shutdown.forced", signal=signal_name)
            sys.exit(EXIT_INTERRUPTED)

        logger.warning(
            "graceful_shutdown.requested",
            signal=signal_name,
            message="Draining pipelines. Ctrl+C again to exit immediately.",
        )
        _hlog.shutdown_requested(signal_name)
        self.request()

    def request(self) -> None:
        """Ask the collector to stop (what the signal handler does)."""
        self._interrupted = True
        self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a stop is requested or ``timeout`` elapses."""
        return self._event.wait(timeout)

    @property
    def should_stop(self) -> bool:
        """True if a stop was requested."""
        return self._interrupted

    def reset(self) -> None:
        """Clear the flag (useful for testing)."""
        self._interrupted = False
        self._event.clear()

    def restore_defaults(self) -> None:
        """Restore the default signal handlers."""
        if not self._installed:
            return
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        self._installed = False
        logger.debug("graceful_shutdown.restored_defaults")
