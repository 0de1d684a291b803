"""Window store adapters.

This package provides a small abstraction layer so limiters can start with an
in-memory store and later migrate to Redis or another shared store without
changing the limiter or the API layer.
"""

from admission.adapters.rate_limit.base import AbstractWindowStore, WindowCount
from admission.adapters.rate_limit.in_memory import InMemoryWindowStore

__all__ = ["AbstractWindowStore", "InMemoryWindowStore", "WindowCount"]
