"""Routers package."""

from . import (
    health,
    auth,
    user,
    billing,
    codes,
    partners,
)
