"""Smart codes: dotted, versioned taxonomy strings such as
``HERA.UNIV.CONFIG.BOOKING.PEAK_TIME.v1``."""

from __future__ import annotations

import re

SMART_CODE_PATTERN = re.compile(r"^HERA\.[A-Z0-9]+(\.[A-Z0-9_]+){2,}\.v[0-9]+$")

CONFIG_PREFIX = "HERA.UNIV.CONFIG"


def is_valid_smart_code(code: str) -> bool:
    """Check a smart code against the platform pattern."""
    return bool(SMART_CODE_PATTERN.match(code))


def family_prefix(family: str) -> str:
    """Smart code prefix for rules of a family (``booking`` -> ``HERA.UNIV.CONFIG.BOOKING``)."""
    return f"{CONFIG_PREFIX}.{_segment(family.replace('.', ' '), sep='.')}"


def build_smart_code(family: str, name: str, version: int = 1, prefix: str | None = None) -> str:
    """Derive a smart code from a family and a human rule name.

    >>> build_smart_code("booking", "Peak time")
    'HERA.UNIV.CONFIG.BOOKING.PEAK_TIME.v1'
    """
    return f"{prefix or family_prefix(family)}.{_segment(name)}.v{version}"


def smart_code_version(code: str) -> int | None:
    """Version number encoded in the smart code, if it is well formed."""
    if not is_valid_smart_code(code):
        return None
    return int(code.rsplit(".v", 1)[1])


def with_version(code: str, version: int) -> str:
    """Replace the version suffix of a smart code."""
    return f"{code.rsplit('.v', 1)[0]}.v{version}"


def _segment(text: str, sep: str = "_") -> str:
    words = re.sub(r"[^A-Za-z0-9\s]", " ", text).split()
    return sep.join(w.upper() for w in words) or "RULE"
