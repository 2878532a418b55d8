"""Administrator consent handshake for a newly registered application."""
from __future__ import annotations
import logging
import os
import sys
import threading
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable, Optional, TextIO

logger = logging.getLogger(__name__)

DEFAULT_WAIT_SECONDS = 60


@dataclass(frozen=True)
class ConsentRequest:
    login_endpoint: str
    tenant: str
    app_id: str
    scope: str

    @property
    def url(self) -> str:
        return (
            f"{self.login_endpoint.rstrip('/')}/{self.tenant}/v2.0/adminconsent"
            f"?client_id={self.app_id}&scope={self.scope}"
        )


class CancellableTimer:
    """Counts a fixed number of ticks, stopping early when cancel_event is set.

    Each tick waits on the event rather than sleeping, so cancellation is
    observed within one interval.
    """

    def __init__(
        self,
        ticks: int,
        interval: float = 1.0,
        cancel_event: Optional[threading.Event] = None,
        on_tick: Optional[Callable[[int], None]] = None,
    ):
        self.ticks = ticks
        self.interval = interval
        self.cancel_event = cancel_event or threading.Event()
        self.on_tick = on_tick
        self.elapsed = 0

    def run(self) -> bool:
        """Block until all ticks elapse.

        Returns:
            True if the countdown completed, False if it was cancelled
        """
        for tick in range(self.ticks):
            if self.cancel_event.wait(self.interval):
                return False
            self.elapsed = tick + 1
            if self.on_tick:
                self.on_tick(tick)
        return not self.cancel_event.is_set()


def is_interactive_platform() -> bool:
    """Whether a browser can be launched for the operator."""
    if sys.platform.startswith("win") or sys.platform == "darwin":
        return True
    if not (os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY")):
        return False
    try:
        webbrowser.get()
    except webbrowser.Error:
        return False
    return True


class ConsentFlowDriver:
    """Wait for the registration to propagate, then hand the operator the consent URL.

    The result record is always emitted before any browser launch, so it
    survives even if consent is never given.
    """

    def __init__(
        self,
        emit: Callable[[dict], Any],
        *,
        cancel_event: Optional[threading.Event] = None,
        wait_seconds: int = DEFAULT_WAIT_SECONDS,
        interval: float = 1.0,
        interactive: Optional[bool] = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
        stream: Optional[TextIO] = None,
    ):
        self.emit = emit
        self.cancel_event = cancel_event or threading.Event()
        self.wait_seconds = wait_seconds
        self.interval = interval
        self.interactive = is_interactive_platform() if interactive is None else interactive
        self.open_browser = open_browser
        self.stream = stream or sys.stderr

    def run(self, request: ConsentRequest, record: dict) -> bool:
        """Drive the consent step.

        Returns:
            True if a browser was launched
        """
        consent_url = request.url
        if not self.interactive:
            print(
                f"[consent] Please wait approximately {self.wait_seconds} seconds, then open the following URL "
                "in a browser window to provide consent. This consent is required in order to use this "
                "application. After you provided consent you will see a blank page, this is correct."
                f"\n\n{consent_url}",
                file=self.stream,
            )
            self.emit(record)
            return False

        print(
            f"[consent] Waiting {self.wait_seconds} seconds to launch consent flow in a browser window. "
            "This wait is required to make sure that Azure AD is able to initialize all required artifacts. "
            "After you provided consent you will see a blank page. This is expected. "
            f"You can always navigate to the consent page manually: {consent_url}",
            file=self.stream,
        )
        timer = CancellableTimer(
            self.wait_seconds,
            self.interval,
            self.cancel_event,
            on_tick=lambda _: print(".", end="", file=self.stream, flush=True),
        )
        completed = timer.run()
        print(file=self.stream)
        if not completed:
            logger.info("Consent wait cancelled after %s of %s ticks", timer.elapsed, self.wait_seconds)

        self.emit(record)
        self.open_browser(consent_url)
        return True
