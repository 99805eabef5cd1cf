"""
hookrelay - Multi-tenant webhook relay

A FastAPI service that resolves a per-tenant secret to a destination,
locates the event JSON in heterogeneous webhook bodies, drops group and
broadcast messages, and relays everything else verbatim.
"""

__version__ = "0.1.0"

from .main import app

__all__ = ["app"]
