"""Deterministic ordering of task identifiers."""

from __future__ import annotations

from collections.abc import Iterable
from functools import cmp_to_key


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def is_pure_numeric(task_id: str) -> bool:
    """Check whether an ID is the canonical decimal form of an integer.

    "10" and "-3" qualify; "010", "-0", "1a", "", " 1" and "+1" do not.
    Works on the digit string, so IDs of any length are accepted.
    """
    digits = task_id[1:] if task_id.startswith("-") else task_id
    if not (digits.isascii() and digits.isdigit()):
        return False
    if digits == "0":
        return task_id == "0"
    return not digits.startswith("0")


def _compare_numeric(a: str, b: str) -> int:
    """Compare two canonical integer strings by value."""
    a_negative = a.startswith("-")
    b_negative = b.startswith("-")
    if a_negative != b_negative:
        return -1 if a_negative else 1

    a_digits = a.lstrip("-")
    b_digits = b.lstrip("-")
    # No leading zeros, so a longer digit string is a larger magnitude
    order = _cmp((len(a_digits), a_digits), (len(b_digits), b_digits))
    return -order if a_negative else order


def compare_task_ids(a: str, b: str) -> int:
    """Three-way comparison of two task IDs.

    Pure numeric IDs compare by integer value and sort before every other
    ID; the remaining IDs compare by code point.

    Args:
        a: First task ID
        b: Second task ID

    Returns:
        Negative if a sorts first, positive if b does, zero if equal
    """
    a_numeric = is_pure_numeric(a)
    b_numeric = is_pure_numeric(b)

    if a_numeric and b_numeric:
        return _compare_numeric(a, b)
    if a_numeric:
        return -1
    if b_numeric:
        return 1
    return _cmp(a, b)


task_id_key = cmp_to_key(compare_task_ids)


def sort_task_ids(ids: Iterable[str]) -> list[str]:
    """Return the IDs sorted with compare_task_ids."""
    return sorted(ids, key=task_id_key)
