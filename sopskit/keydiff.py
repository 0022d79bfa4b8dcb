"""Differences between two lists of key groups."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, TextIO

_UNDERLINE = "\x1b[4m"
_GREEN = "\x1b[32m"
_RED = "\x1b[31m"
_RESET = "\x1b[0m"


@dataclass
class Diff:
    """The keys a group has in common, gains and loses."""

    common: List[Any] = field(default_factory=list)
    added: List[Any] = field(default_factory=list)
    removed: List[Any] = field(default_factory=list)


def diff_key_groups(ours: Sequence[Sequence[Any]], theirs: Sequence[Sequence[Any]]) -> List[Diff]:
    """Compare key groups position by position, keys matched by to_string()."""
    diffs = []
    for index in range(max(len(ours), len(theirs))):
        our_group = ours[index] if index < len(ours) else []
        their_group = theirs[index] if index < len(theirs) else []
        our_names = {key.to_string() for key in our_group}
        their_names = {key.to_string() for key in their_group}
        diff = Diff()
        for key in their_group:
            (diff.common if key.to_string() in our_names else diff.added).append(key)
        diff.removed = [key for key in our_group if key.to_string() not in their_names]
        diffs.append(diff)
    return diffs


def pretty_print_diffs(diffs: Sequence[Diff], stream: Optional[TextIO] = None) -> None:
    """Write the diffs, coloured when the stream is a terminal."""
    out = sys.stdout if stream is None else stream
    isatty = getattr(out, "isatty", None)
    colour = bool(isatty and isatty())

    def paint(code: str, text: str) -> str:
        return f"{code}{text}{_RESET}" if colour else text

    for number, diff in enumerate(diffs, start=1):
        out.write(paint(_UNDERLINE, f"Group {number}\n"))
        for key in diff.common:
            out.write(f"    {key.to_string()}\n")
        for key in diff.added:
            out.write(paint(_GREEN, f"+++ {key.to_string()}\n"))
        for key in diff.removed:
            out.write(paint(_RED, f"--- {key.to_string()}\n"))