"""
Environment signals consumed by the attempt state machine.

Every host-specific event source (page visibility, window focus, fullscreen
changes, history navigation, clipboard and devtools detection) is adapted to a
single `Environment` interface: the state machine subscribes one listener and
calls back for fullscreen and navigation control.

`HeadlessEnvironment` is the in-process implementation used by embedders that
drive the engine programmatically, and by the test suite.
"""

import abc
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from assessment.core.errors import FullscreenDeniedError
from assessment.core.graceful_failure import graceful_failure

logger = logging.getLogger(__name__)


class SignalKind(str, enum.Enum):
    """Host events the engine reacts to."""

    VISIBILITY_HIDDEN = "visibility_hidden"
    VISIBILITY_VISIBLE = "visibility_visible"
    BLUR = "blur"
    FOCUS = "focus"
    FULLSCREEN_ENTERED = "fullscreen_entered"
    FULLSCREEN_EXITED = "fullscreen_exited"
    NAVIGATION_ATTEMPT = "navigation_attempt"
    COPY = "copy"
    PASTE = "paste"
    CONTEXT_MENU = "context_menu"
    RESIZE = "resize"
    DEVTOOLS_OPEN = "devtools_open"
    NETWORK_OFFLINE = "network_offline"
    MULTI_MONITOR_HINT = "multi_monitor_hint"


@dataclass(frozen=True)
class EnvironmentSignal:
    kind: SignalKind
    meta: Optional[Dict[str, Any]] = None


SignalListener = Callable[[EnvironmentSignal], None]


class Environment(abc.ABC):
    """Host adapter: signal source plus fullscreen and navigation control."""

    def __init__(self) -> None:
        self._listeners: List[SignalListener] = []

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, signal: EnvironmentSignal) -> None:
        """Deliver a signal to every listener. A failing listener does not stop the others."""
        for listener in list(self._listeners):
            with graceful_failure(
                "handle environment signal",
                logger,
                log_level=logging.ERROR,
                exc_info=True,
                context={"signal": signal.kind.value},
            ):
                listener(signal)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    @abc.abstractmethod
    def is_fullscreen(self) -> bool:
        """Whether the test surface is currently fullscreen."""

    @abc.abstractmethod
    async def request_fullscreen(self) -> None:
        """Enter fullscreen. Raises FullscreenDeniedError when the host refuses."""

    @abc.abstractmethod
    async def exit_fullscreen(self) -> None:
        """Leave fullscreen (engine-controlled exit)."""

    @abc.abstractmethod
    def reassert_location(self) -> None:
        """Undo a pending navigation so the test page stays current."""

    @abc.abstractmethod
    def navigate(self, destination: str) -> None:
        """Leave the test page for a post-test destination."""


class HeadlessEnvironment(Environment):
    """In-process environment driven by explicit calls.

    Fullscreen requests are granted only while `gesture_available` is True,
    mirroring hosts that require a fresh user gesture.
    """

    def __init__(self, *, gesture_available: bool = True, fullscreen: bool = False) -> None:
        super().__init__()
        self.gesture_available = gesture_available
        self._fullscreen = fullscreen
        self.location_reasserts = 0
        self.navigations: List[str] = []
        self.fullscreen_requests = 0

    @property
    def is_fullscreen(self) -> bool:
        return self._fullscreen

    async def request_fullscreen(self) -> None:
        self.fullscreen_requests += 1
        if not self.gesture_available:
            raise FullscreenDeniedError("Fullscreen requires a user gesture")
        if not self._fullscreen:
            self._fullscreen = True
            self.dispatch(EnvironmentSignal(SignalKind.FULLSCREEN_ENTERED))

    async def exit_fullscreen(self) -> None:
        if self._fullscreen:
            self._fullscreen = False
            self.dispatch(EnvironmentSignal(SignalKind.FULLSCREEN_EXITED))

    def reassert_location(self) -> None:
        self.location_reasserts += 1

    def navigate(self, destination: str) -> None:
        self.navigations.append(destination)

    # ------------------------------------------------------------------
    # Host-side actions
    # ------------------------------------------------------------------

    def emit(self, kind: SignalKind, meta: Optional[Dict[str, Any]] = None) -> None:
        self.dispatch(EnvironmentSignal(kind, meta))

    def user_exits_fullscreen(self) -> None:
        """The test taker leaves fullscreen on their own (e.g. presses Escape)."""
        if self._fullscreen:
            self._fullscreen = False
            self.dispatch(EnvironmentSignal(SignalKind.FULLSCREEN_EXITED))

    def press_back(self) -> None:
        self.dispatch(EnvironmentSignal(SignalKind.NAVIGATION_ATTEMPT, {"source": "back"}))
