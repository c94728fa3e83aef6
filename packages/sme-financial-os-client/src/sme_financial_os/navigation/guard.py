"""Navigation guard: redirects between login, onboarding and the app shell."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import structlog

from sme_financial_os.auth.models import AuthSnapshot

if TYPE_CHECKING:
    from sme_financial_os.auth.context import AuthContext

log = structlog.get_logger(__name__)


class RenderMode(str, Enum):
    WAITING = "waiting"    # neutral spinner, session check in flight
    NOTHING = "nothing"    # render nothing while a redirect happens
    BARE = "bare"          # page content without the application shell
    SHELL = "shell"        # page inside the application shell


@dataclass(frozen=True)
class Routes:
    login: str = "/login"
    onboarding: str = "/onboarding"
    default: str = "/"


@dataclass(frozen=True)
class GuardDecision:
    render: RenderMode
    redirect_to: str | None = None


class Navigator(Protocol):
    """Routing collaborator owned by the embedding application."""

    @property
    def pathname(self) -> str: ...

    def push(self, path: str) -> None: ...


def evaluate(snapshot: AuthSnapshot, pathname: str, routes: Routes = Routes()) -> GuardDecision:
    """Pure routing policy over a context snapshot and the current path."""
    if snapshot.is_loading:
        return GuardDecision(RenderMode.WAITING)

    if not snapshot.is_authenticated:
        if pathname == routes.login:
            return GuardDecision(RenderMode.BARE)
        return GuardDecision(RenderMode.NOTHING, redirect_to=routes.login)

    on_onboarding = pathname == routes.onboarding
    if not snapshot.organizations:
        if on_onboarding:
            return GuardDecision(RenderMode.BARE)
        return GuardDecision(RenderMode.WAITING, redirect_to=routes.onboarding)

    if on_onboarding:
        return GuardDecision(RenderMode.BARE, redirect_to=routes.default)
    return GuardDecision(RenderMode.SHELL)


class NavigationGuard:
    """Applies :func:`evaluate` on every context change and route change.

    Never mutates the context; its only side effect is ``navigator.push``.
    """

    def __init__(self, navigator: Navigator, routes: Routes | None = None) -> None:
        self._navigator = navigator
        self._routes = routes or Routes()
        self._snapshot: AuthSnapshot | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self.decision = GuardDecision(RenderMode.WAITING)

    def attach(self, context: AuthContext) -> None:
        self.detach()
        self._unsubscribe = context.subscribe(self._on_snapshot)
        self._on_snapshot(context.snapshot)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_route_change(self, pathname: str) -> GuardDecision:
        if self._snapshot is None:
            return self.decision
        return self._apply(self._snapshot, pathname)

    def _on_snapshot(self, snapshot: AuthSnapshot) -> None:
        self._snapshot = snapshot
        self._apply(snapshot, self._navigator.pathname)

    def _apply(self, snapshot: AuthSnapshot, pathname: str) -> GuardDecision:
        decision = evaluate(snapshot, pathname, self._routes)
        self.decision = decision
        if decision.redirect_to and decision.redirect_to != pathname:
            log.info(
                "navigation_redirect",
                from_path=pathname,
                to_path=decision.redirect_to,
                status=snapshot.status.value,
            )
            self._navigator.push(decision.redirect_to)
        return decision
