"""
LabelDesk Backend — Label Naming
==================================

What:  Pure functions that compute a collision-free label name from a base
       name and a snapshot of the sibling names in the same project.
Why:   Pure and deterministic, so the retry loop can simply recompute a
       name from a fresh snapshot after a concurrent insert.
Who:   LabelLifecycleService (create, bulk-create, duplicate).

Both functions are deterministic: the same inputs always give the same name,
and the result is never a member of `existing_names`.

    generate_unique_name({"New Label 1"})                → "New Label 2"
    generate_copy_name("Invoice", {"Invoice Copy"})      → "Invoice Copy 2"
    generate_copy_name("Invoice Copy 2", {...Copy 2})    → "Invoice Copy 3"
"""

import re
from itertools import count
from typing import AbstractSet, Iterable, Optional

DEFAULT_BASE_NAME = "New Label"
COPY_SUFFIX = "Copy"

# "<stem> Copy" or "<stem> Copy <n>"
_COPY_PATTERN = re.compile(r"^(?P<stem>.+?) Copy(?: (?P<n>\d+))?$")


def _as_set(names: Iterable[str]) -> AbstractSet[str]:
    if isinstance(names, (set, frozenset)):
        return names
    return frozenset(names)


def _fit(stem: str, suffix: str, max_length: Optional[int]) -> str:
    """`stem + suffix`, with the stem cut back so the whole fits in max_length."""
    if max_length is not None and len(stem) + len(suffix) > max_length:
        stem = stem[: max(max_length - len(suffix), 0)].rstrip()
    return f"{stem}{suffix}"


def generate_unique_name(
    existing_names: Iterable[str],
    base_name: Optional[str] = DEFAULT_BASE_NAME,
    max_length: Optional[int] = None,
) -> str:
    """
    Return "<base_name> <k>" for the smallest positive k not already taken.

    The numbered form is used even when the bare base name is free, so a
    single create and a bulk create of the same base produce the same
    sequence ("New Label 1", "New Label 2", ...). A blank base falls back to
    DEFAULT_BASE_NAME. A base that already ends in digits is treated as
    opaque text: "Label 2" yields "Label 2 1".

    With `max_length`, the base is shortened (never the number) so the
    result fits.
    """
    base = (base_name or "").strip() or DEFAULT_BASE_NAME
    taken = _as_set(existing_names)

    for k in count(1):
        candidate = _fit(base, f" {k}", max_length)
        if candidate not in taken:
            return candidate
    raise AssertionError("unreachable")  # pragma: no cover


def _first_free_copy(stem: str, start: int, taken: AbstractSet[str], max_length: Optional[int]) -> str:
    for n in count(start):
        candidate = _fit(stem, f" {COPY_SUFFIX} {n}", max_length)
        if candidate not in taken:
            return candidate
    raise AssertionError("unreachable")  # pragma: no cover


def generate_copy_name(
    original_name: str,
    existing_names: Iterable[str],
    max_length: Optional[int] = None,
) -> str:
    """
    Name for a duplicate of `original_name`.

    - "<stem> Copy"     → next unused "<stem> Copy <n>", n from 2
    - "<stem> Copy <n>" → next unused "<stem> Copy <m>", m from n + 1
    - anything else     → "<original> Copy", or the smallest unused
                          "<original> Copy <n>" (n ≥ 2) if that is taken

    Copying a copy keeps incrementing the counter instead of producing
    "Copy Copy". With `max_length`, the stem is shortened so the suffix
    always survives.
    """
    original = original_name.strip()
    taken = _as_set(existing_names)

    match = _COPY_PATTERN.match(original)
    if match:
        stem = match.group("stem")
        current = match.group("n")
        start = int(current) + 1 if current else 2
        return _first_free_copy(stem, start, taken, max_length)

    candidate = _fit(original, f" {COPY_SUFFIX}", max_length)
    if candidate not in taken:
        return candidate
    return _first_free_copy(original, 2, taken, max_length)
