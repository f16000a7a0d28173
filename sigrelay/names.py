"""Display-name allocation within a room.

Collisions are the common case (every anonymous client is "Player"), so the
allocator answers the uncontended case immediately, then tries random
three-digit suffixes, then sequential suffixes. The final clock-based suffix
is not checked against the used set; it only makes a duplicate unlikely.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Collection
from typing import Any

from .constants import (
    NAME_CLOCK_MODULUS,
    NAME_RANDOM_ATTEMPTS,
    NAME_RANDOM_MAX,
    NAME_RANDOM_MIN,
    NAME_SEQUENTIAL_LIMIT,
    NAME_SEQUENTIAL_START,
)
from .envelope import now_ms
from .util import normalize_display_name


def unique_name(
    base_name: Any,
    used: Collection[str],
    *,
    rng: random.Random | None = None,
    clock: Callable[[], int] = now_ms,
) -> str:
    """Return a display name whose lower-case form is not in `used`.

    `used` must already be lower-cased and must not contain the caller's own
    current name when re-allocating for an existing member.
    """
    base = normalize_display_name(base_name)
    if base.lower() not in used:
        return base

    r = rng if rng is not None else random
    for _ in range(NAME_RANDOM_ATTEMPTS):
        candidate = f"{base}{r.randint(NAME_RANDOM_MIN, NAME_RANDOM_MAX)}"
        if candidate.lower() not in used:
            return candidate

    for n in range(NAME_SEQUENTIAL_START, NAME_SEQUENTIAL_LIMIT):
        candidate = f"{base}{n}"
        if candidate.lower() not in used:
            return candidate

    return f"{base}{int(clock()) % NAME_CLOCK_MODULUS}"
