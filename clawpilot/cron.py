"""Minute-granularity cron matching.

Supports the five standard fields with ``*``, integers, lists (``a,b``),
ranges (``a-b``) and steps (``*/n`` or ``base/n``). Anything else never
matches.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable

DEBOUNCE_SECONDS = 59

_NUMBER = re.compile(r"\d+", re.ASCII)

FieldMatcher = Callable[[int], bool]


def _parse_int(text: str) -> int | None:
    text = text.strip()
    return int(text) if _NUMBER.fullmatch(text) else None


def compile_field(field: str) -> FieldMatcher | None:
    """Return a predicate for one cron field, or None if it is malformed."""

    if field == "*":
        return lambda value: True

    if "/" in field:
        base_text, _, step_text = field.partition("/")
        step = _parse_int(step_text)
        base = 0 if base_text == "*" else _parse_int(base_text)
        if step is None or step <= 0 or base is None or "/" in step_text:
            return None
        return lambda value: value >= base and (value - base) % step == 0

    if "," in field:
        options = [_parse_int(part) for part in field.split(",")]
        if any(option is None for option in options):
            return None
        allowed = frozenset(options)
        return lambda value: value in allowed

    if "-" in field:
        low_text, _, high_text = field.partition("-")
        low, high = _parse_int(low_text), _parse_int(high_text)
        if low is None or high is None:
            return None
        return lambda value: low <= value <= high

    exact = _parse_int(field)
    if exact is None:
        return None
    return lambda value: value == exact


def matches_cron_field(field: str, value: int) -> bool:
    matcher = compile_field(field)
    return matcher is not None and matcher(value)


def _split(expression: str) -> list[str] | None:
    parts = expression.split()
    return parts if len(parts) == 5 else None


def is_valid_cron(expression: str) -> bool:
    parts = _split(expression)
    return parts is not None and all(compile_field(part) is not None for part in parts)


def cron_matches(expression: str, now: datetime) -> bool:
    """Whether every field of ``expression`` matches the minute ``now`` falls in."""

    parts = _split(expression)
    if parts is None:
        return False
    # Day of week counts from Sunday = 0.
    components = (now.minute, now.hour, now.day, now.month, (now.weekday() + 1) % 7)
    return all(matches_cron_field(part, value) for part, value in zip(parts, components))


def is_due(expression: str, last_run_at: datetime | None, now: datetime) -> bool:
    """Cron match plus a debounce against firing twice in the same minute."""

    if not cron_matches(expression, now):
        return False
    if last_run_at is not None and (now - last_run_at).total_seconds() < DEBOUNCE_SECONDS:
        return False
    return True
