"""HTTP probes for the surrounding process."""

from revlead.api.app import create_app

__all__ = ["create_app"]
