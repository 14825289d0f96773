"""Line-level diff based on a longest-common-subsequence table."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DiffLineType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class DiffLine:
    type: DiffLineType
    content: str


@dataclass(frozen=True, slots=True)
class DiffSummary:
    added: int
    removed: int
    unchanged: int

    @property
    def has_changes(self) -> bool:
        return self.added > 0 or self.removed > 0


def compute_line_diff(before: str, after: str) -> list[DiffLine]:
    """Return an edit script turning ``before`` into ``after``, in display order.

    Every line of both inputs appears exactly once. When the table gives no
    preference, "added" is emitted first during backtracking so adjacent
    replace pairs render as removed-then-added after reversal, identically on
    every run. O(n*m) time and memory.
    """

    a = before.split("\n")
    b = after.split("\n")
    n = len(a)
    m = len(b)

    dp = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(1, n + 1):
        row = dp[i]
        prev_row = dp[i - 1]
        left = a[i - 1]
        for j in range(1, m + 1):
            if left == b[j - 1]:
                row[j] = prev_row[j - 1] + 1
            else:
                row[j] = max(prev_row[j], row[j - 1])

    result: list[DiffLine] = []
    i, j = n, m
    while i > 0 or j > 0:
        if i > 0 and j > 0 and a[i - 1] == b[j - 1]:
            result.append(DiffLine(DiffLineType.UNCHANGED, a[i - 1]))
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or dp[i][j - 1] >= dp[i - 1][j]):
            result.append(DiffLine(DiffLineType.ADDED, b[j - 1]))
            j -= 1
        else:
            result.append(DiffLine(DiffLineType.REMOVED, a[i - 1]))
            i -= 1

    result.reverse()
    return result


def summarize_diff(lines: list[DiffLine]) -> DiffSummary:
    added = sum(1 for line in lines if line.type is DiffLineType.ADDED)
    removed = sum(1 for line in lines if line.type is DiffLineType.REMOVED)
    return DiffSummary(added=added, removed=removed, unchanged=len(lines) - added - removed)


def render_diff_lines(lines: list[DiffLine], *, context: int | None = None) -> list[str]:
    """Render as ``+``/``-``/space prefixed text lines.

    With ``context`` set, unchanged runs farther than ``context`` lines from a
    change collapse into a single ``...`` marker.
    """

    prefixes = {
        DiffLineType.ADDED: "+",
        DiffLineType.REMOVED: "-",
        DiffLineType.UNCHANGED: " ",
    }
    if context is None:
        return [f"{prefixes[line.type]} {line.content}".rstrip() for line in lines]

    changed = [index for index, line in enumerate(lines) if line.type is not DiffLineType.UNCHANGED]
    keep: set[int] = set()
    for index in changed:
        keep.update(range(max(0, index - context), min(len(lines), index + context + 1)))

    rendered: list[str] = []
    skipping = False
    for index, line in enumerate(lines):
        if index in keep:
            rendered.append(f"{prefixes[line.type]} {line.content}".rstrip())
            skipping = False
        elif not skipping:
            rendered.append("...")
            skipping = True
    return rendered
