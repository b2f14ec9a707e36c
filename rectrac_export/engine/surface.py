from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from playwright.async_api import BrowserContext, Frame, Page

from rectrac_export.utils.logger import get_logger


class SurfaceKind(str, Enum):
    MAIN = "main"
    FRAME = "frame"
    WINDOW = "window"


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOGIN_FORM_VISIBLE = "login_form_visible"
    SUBMITTING = "submitting"
    RESUME_PROMPT = "resume_prompt"
    SPINNER = "spinner"
    AUTHENTICATED_HOME = "authenticated_home"
    STUCK = "stuck"


def _descendant_frames(frame: Any) -> list:
    found = []
    for child in getattr(frame, "child_frames", None) or []:
        found.append(child)
        found.extend(_descendant_frames(child))
    return found


@dataclass(frozen=True)
class Surface:
    """The renderable scope UI operations act against.

    ``page`` is the window that owns ``root``; ``root`` is either that page
    or one of its frames.
    """

    kind: SurfaceKind
    page: Page
    root: Page | Frame
    label: str = ""

    def nested(self) -> list:
        if self.root is self.page:
            main = self.page.main_frame
            return [f for f in self.page.frames if f is not main]
        return _descendant_frames(self.root)

    def roots(self) -> list:
        """Primary document first, then every nested document."""
        return [self.root, *self.nested()]

    def describe(self) -> str:
        url = getattr(self.root, "url", "")
        return f"{self.kind.value}:{self.label or url}"


@dataclass
class Session:
    """One browser context driven by one run.

    Exactly one surface is active at a time and only ``switch_to`` changes it.
    """

    context: BrowserContext
    page: Page
    state: AuthState = AuthState.UNAUTHENTICATED
    active: Surface | None = None
    transitions: list[AuthState] = field(default_factory=list)

    def __post_init__(self):
        self.log = get_logger("Session")
        if self.active is None:
            self.active = Surface(SurfaceKind.MAIN, self.page, self.page, "main")

    @property
    def main_surface(self) -> Surface:
        return Surface(SurfaceKind.MAIN, self.page, self.page, "main")

    def switch_to(self, surface: Surface) -> Surface:
        previous = self.active
        self.active = surface
        self.log.info(
            "🔀 Switched surface",
            from_surface=previous.describe() if previous else None,
            to_surface=surface.describe(),
        )
        return surface

    def enter(self, state: AuthState) -> AuthState:
        if state != self.state:
            self.log.debug("Auth state", from_state=self.state.value, to_state=state.value)
        self.state = state
        self.transitions.append(state)
        return state

    @property
    def authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED_HOME
