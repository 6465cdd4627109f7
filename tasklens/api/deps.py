"""
FastAPI dependencies.

Session issuance happens upstream: the auth gateway forwards the caller in
`X-Principal-Id` and proves itself with `X-Internal-Secret`. The header is
only trusted when the secret matches.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import Request

from tasklens.auth.identity import Principal
from tasklens.config import get_settings
from tasklens.pipeline.service import ExtractionPipeline

PRINCIPAL_HEADER = "X-Principal-Id"
SECRET_HEADER = "X-Internal-Secret"


@dataclass(slots=True)
class HeaderIdentityResolver:
    """Resolves the caller from gateway-forwarded headers, on every call."""

    request: Request
    expected_secret: str

    async def resolve_user_identity(self) -> Principal | None:
        if not self.expected_secret:
            return None
        provided = self.request.headers.get(SECRET_HEADER, "")
        if not secrets.compare_digest(provided.encode(), self.expected_secret.encode()):
            return None
        subject = (self.request.headers.get(PRINCIPAL_HEADER) or "").strip()
        if not subject:
            return None
        return Principal(
            subject=subject,
            email=self.request.headers.get("X-Principal-Email"),
            name=self.request.headers.get("X-Principal-Name"),
        )


def get_identity(request: Request) -> HeaderIdentityResolver:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return HeaderIdentityResolver(request=request, expected_secret=settings.internal_auth_secret)


def get_pipeline(request: Request) -> ExtractionPipeline:
    return request.app.state.pipeline
