from __future__ import annotations

import random
import re
import secrets
import time
from uuid import uuid4


_PREFIX_RE = re.compile(r"^[a-z][a-z0-9]{1,24}$")


def new_prefixed_id(prefix: str) -> str:
    """Generate a new ID using a short prefix.

    Format: `{prefix}_{uuidhex}`.
    """
    if not _PREFIX_RE.fullmatch(prefix):
        raise ValueError(
            "Invalid id prefix. Expected lowercase letters/digits, 2-25 chars, "
            "starting with a letter."
        )
    return f"{prefix}_{uuid4().hex}"


def is_prefixed_id(value: str, prefix: str) -> bool:
    """Return True if `value` starts with the `{prefix}_` convention."""
    return value.startswith(f"{prefix}_")


def random_token() -> str:
    """Return a 128-bit random token as 32 hex chars.

    Falls back to a timestamp + pseudo-random composite when the OS
    entropy source is unavailable.
    """
    try:
        return secrets.token_hex(16)
    except NotImplementedError:
        return f"{int(time.time() * 1000)}-{random.getrandbits(64):016x}"


def synthesize_task_id(index: int) -> str:
    """Correlation id for the `index`-th (0-based) extracted task."""
    return f"task-{index + 1}-{random_token()}"
