"""Data backends: live REST API or static demo fixtures."""
from typing import Optional

from docsmile import config
from docsmile.backends.base import ClinicBackend
from docsmile.backends.live import LiveBackend
from docsmile.backends.static import StaticBackend

BACKENDS = {
    "live": LiveBackend,
    "static": StaticBackend,
}


def create_backend(mode: Optional[str] = None, session=None, clock=None, tz=None) -> ClinicBackend:
    """
    Create the backend selected by configuration.

    Args:
        mode: "live" or "static" (default: DOCSMILE_DATA_MODE)
        session: ClinicSession whose token authenticates live calls
        clock: Pinned clock for the static fixtures
        tz: Clinic timezone for the static fixtures

    Raises:
        ValueError: If the mode is unknown
    """
    mode = (mode or config.DATA_MODE).strip().lower()
    if mode not in BACKENDS:
        raise ValueError(f"Unknown data mode: {mode} (expected one of {', '.join(BACKENDS)})")

    if mode == "live":
        return LiveBackend(session=session)
    return StaticBackend(clock=clock, tz=tz)


__all__ = ["ClinicBackend", "LiveBackend", "StaticBackend", "create_backend"]
