"""Static file server used to host the test harness."""

from .service import StaticServer

__all__ = ["StaticServer"]
