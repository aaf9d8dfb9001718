"""Routers package."""

from . import (
    health,
    posts,
    admin,
)
