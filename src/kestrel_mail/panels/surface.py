# =============================================================================
# Panel Surfaces
# =============================================================================
# A PanelSurface is the UI container a panel renders into (a tab in the
# Textual host, a fake in the tests). Panels never touch widgets directly:
# they post payload dicts to the surface and receive action dicts back.
#
#   panel  --post({"type": "messages", ...})-->  surface
#   panel  <--{"type": "openMessage", ...}-----  surface
#
# PanelHost creates surfaces. Creation is async because a host may need to
# wait for the widget to be mounted.
# =============================================================================

from enum import Enum, auto
from typing import Any, Callable, Protocol

Payload = dict[str, Any]


class PanelState(Enum):
    """Life cycle of a panel: ABSENT -> CREATING -> READY -> DISPOSED."""
    ABSENT = auto()
    CREATING = auto()
    READY = auto()
    DISPOSED = auto()


class PanelSurface(Protocol):
    title: str

    @property
    def alive(self) -> bool: ...

    def reveal(self) -> None: ...

    def post(self, payload: Payload) -> None: ...

    def dispose(self) -> None: ...

    def on_did_dispose(self, callback: Callable[[], Any]) -> Callable[[], None]: ...

    def on_did_receive(self, callback: Callable[[Payload], Any]) -> Callable[[], None]: ...


class PanelHost(Protocol):
    async def create_surface(self, view_type: str, title: str) -> PanelSurface: ...
