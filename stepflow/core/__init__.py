from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = ["CamoufoxSession", "PlaywrightTransport", "Transport"]

if TYPE_CHECKING:
    from .browser_interface import CamoufoxSession, PlaywrightTransport
    from .transport import Transport


def __getattr__(name: str):
    if name in {"CamoufoxSession", "PlaywrightTransport"}:
        from . import browser_interface

        return getattr(browser_interface, name)
    if name == "Transport":
        from .transport import Transport as value

        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(list(globals().keys()) + __all__)
