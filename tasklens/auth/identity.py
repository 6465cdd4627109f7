"""
Identity resolution.

Session issuance lives outside this service. Every pipeline entry point and
every tool invocation asks an `IdentityResolver` for the current principal;
an absent principal is an `UnauthenticatedError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import structlog

from tasklens.kernel.errors import UnauthenticatedError

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class Principal:
    """An authenticated caller."""

    subject: str
    email: str | None = None
    name: str | None = None
    claims: dict[str, str] = field(default_factory=dict, compare=False)


class IdentityResolver(Protocol):
    async def resolve_user_identity(self) -> Principal | None:
        ...


@dataclass(slots=True)
class StaticIdentityResolver:
    """Resolver bound to one already-authenticated principal (or none)."""

    principal: Principal | None = None

    async def resolve_user_identity(self) -> Principal | None:
        return self.principal


async def require_principal(resolver: IdentityResolver) -> Principal:
    """Resolve the caller or raise `UnauthenticatedError`.

    Called afresh on every entry point and tool call; results are never cached.
    """
    principal = await resolver.resolve_user_identity()
    if principal is None:
        logger.info("Rejected unauthenticated call")
        raise UnauthenticatedError()
    return principal
