"""Word-level diff between an original prompt and its improved version.

Both texts are split into alternating word and whitespace tokens, aligned
with a longest-common-subsequence pass and walked into a list of
unchanged/added/removed segments. Whitespace is kept verbatim, so joining
the unchanged and removed segments gives back the original text and joining
the unchanged and added segments gives back the improved text.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from pea.config import LCS_CELL_LIMIT
from pea.schemas.diff import DiffKind, DiffSegment, DiffSummary

_WHITESPACE_RE = re.compile(r"(\s+)")


def _is_blank(token: str) -> bool:
    return token.isspace()


def tokenize(text: str) -> list[str]:
    """Split *text* into word and whitespace tokens, keeping the whitespace."""
    return [token for token in _WHITESPACE_RE.split(text) if token]


def longest_common_subsequence(a: Sequence[str], b: Sequence[str]) -> list[str]:
    """Return the LCS of two token sequences.

    On ties while backtracking the improved side (``b``) is stepped back
    first. This only decides which of several equally long subsequences is
    returned when words repeat.

    Falls back to :func:`approximate_common_tokens` once ``len(a) * len(b)``
    exceeds ``LCS_CELL_LIMIT``.
    """
    m, n = len(a), len(b)
    if m * n > LCS_CELL_LIMIT:
        return approximate_common_tokens(a, b)

    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        row, prev = dp[i], dp[i - 1]
        token = a[i - 1]
        for j in range(1, n + 1):
            if token == b[j - 1]:
                row[j] = prev[j - 1] + 1
            else:
                row[j] = max(prev[j], row[j - 1])

    result: list[str] = []
    i, j = m, n
    while i > 0 and j > 0:
        if a[i - 1] == b[j - 1]:
            result.append(a[i - 1])
            i -= 1
            j -= 1
        elif dp[i - 1][j] > dp[i][j - 1]:
            i -= 1
        else:
            j -= 1
    result.reverse()
    return result


def approximate_common_tokens(a: Sequence[str], b: Sequence[str]) -> list[str]:
    """Non-blank tokens of *a* that occur anywhere in *b*, in the order of *a*.

    This is not a true subsequence of *b* when word order differs between the
    texts. It keeps long diffs linear; the walk in :func:`diff` skips any
    token it cannot align.
    """
    present = set(b)
    return [token for token in a if token in present and not _is_blank(token)]


def _merge(raw: Iterable[tuple[DiffKind, str]]) -> list[DiffSegment]:
    merged: list[tuple[DiffKind, list[str]]] = []
    for kind, text in raw:
        if merged and merged[-1][0] is kind:
            merged[-1][1].append(text)
        else:
            merged.append((kind, [text]))
    return [DiffSegment(kind=kind, text="".join(parts)) for kind, parts in merged]


def diff(original: str, improved: str) -> list[DiffSegment]:
    """Compute the word-level diff turning *original* into *improved*."""
    if original == improved:
        return [DiffSegment(kind=DiffKind.UNCHANGED, text=original)] if original else []

    a = tokenize(original)
    b = tokenize(improved)
    approximate = len(a) * len(b) > LCS_CELL_LIMIT
    common = longest_common_subsequence(a, b)

    raw: list[tuple[DiffKind, str]] = []
    i = j = k = 0
    while i < len(a) or j < len(b):
        # The approximate token set never contains whitespace; let runs that
        # line up on both sides through as unchanged.
        if approximate and i < len(a) and j < len(b) and _is_blank(a[i]) and a[i] == b[j]:
            raw.append((DiffKind.UNCHANGED, a[i]))
            i += 1
            j += 1
            continue

        target = common[k] if k < len(common) else None
        while i < len(a) and a[i] != target:
            raw.append((DiffKind.REMOVED, a[i]))
            i += 1
        while j < len(b) and b[j] != target:
            raw.append((DiffKind.ADDED, b[j]))
            j += 1

        if target is None:
            continue
        if i < len(a) and j < len(b):
            raw.append((DiffKind.UNCHANGED, a[i]))
            i += 1
            j += 1
        # Unalignable common token (approximate path only); drop it.
        k += 1

    return _merge(raw)


def summarize(segments: Iterable[DiffSegment]) -> DiffSummary:
    """Count the words in each kind of segment."""
    counts = {kind: 0 for kind in DiffKind}
    for segment in segments:
        counts[segment.kind] += sum(1 for token in tokenize(segment.text) if not _is_blank(token))
    return DiffSummary(
        unchanged=counts[DiffKind.UNCHANGED],
        added=counts[DiffKind.ADDED],
        removed=counts[DiffKind.REMOVED],
    )
