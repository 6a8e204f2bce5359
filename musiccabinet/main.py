from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType

from musiccabinet.dependencies import (
    get_refresh_scheduler,
    get_settings,
    get_stop_event,
)
from musiccabinet.logging_config import configure_application_logging
from musiccabinet.services.refresh_service import RefreshSchedulerService

LOGGER = logging.getLogger("musiccabinet.runtime")


@contextmanager
def runtime() -> Iterator[RefreshSchedulerService | None]:
    settings = get_settings()
    configure_application_logging(settings)
    scheduler: RefreshSchedulerService | None = None

    if settings.refresh_enabled:
        scheduler = get_refresh_scheduler()
        scheduler.start()

    try:
        yield scheduler
    finally:
        if scheduler is not None:
            scheduler.stop()
        else:
            get_stop_event().set()


def run() -> None:
    stop_event = get_stop_event()

    def _request_shutdown(signum: int, _frame: FrameType | None) -> None:
        LOGGER.info("shutdown requested signal=%s", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_shutdown)
    signal.signal(signal.SIGINT, _request_shutdown)

    with runtime():
        while not stop_event.wait(1.0):
            pass


if __name__ == "__main__":
    run()
