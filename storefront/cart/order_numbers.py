"""Human readable order identifiers."""

from __future__ import annotations

import random
import secrets
import string
from datetime import datetime, timezone

DEFAULT_PREFIX = "AFM"
SUFFIX_LENGTH = 6
_BASE36_ALPHABET = string.digits + string.ascii_uppercase
_SYSTEM_RANDOM = secrets.SystemRandom()


def generate_order_number(
    now: datetime | None = None,
    rng: random.Random | None = None,
    *,
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """Return ``<prefix>-YYMMDD-XXXXXX`` for the UTC date of ``now``.

    Uniqueness is not checked here; collisions are detected when the order is
    persisted.
    """

    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    source = rng or _SYSTEM_RANDOM
    suffix = "".join(source.choice(_BASE36_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{moment.astimezone(timezone.utc):%y%m%d}-{suffix}"
