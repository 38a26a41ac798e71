from __future__ import annotations

from .server import ResultHub, create_app

__all__ = ["ResultHub", "create_app"]
