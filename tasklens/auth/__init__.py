"""Caller identity resolution."""

from .identity import (
    IdentityResolver,
    Principal,
    StaticIdentityResolver,
    require_principal,
)

__all__ = [
    "IdentityResolver",
    "Principal",
    "StaticIdentityResolver",
    "require_principal",
]
