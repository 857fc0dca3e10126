"""Edit-distance helpers for "did you mean" suggestions.

Suggestions are only ever shown to the user; an unknown command is
never executed on the strength of a close match.
"""

from typing import Iterable, Optional


def levenshtein_distance(a: str, b: str) -> int:
    """Return the Levenshtein distance between two strings.

    Insertion, deletion and substitution each cost 1. Uses the full
    dynamic-programming table.
    """
    rows = len(b) + 1
    cols = len(a) + 1
    matrix = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            if b[i - 1] == a[j - 1]:
                matrix[i][j] = matrix[i - 1][j - 1]
            else:
                matrix[i][j] = min(
                    matrix[i - 1][j - 1] + 1,  # substitution
                    matrix[i][j - 1] + 1,      # insertion
                    matrix[i - 1][j] + 1,      # deletion
                )

    return matrix[-1][-1]


def suggest(unknown: str, candidates: Iterable[str]) -> Optional[str]:
    """Return the candidate closest to ``unknown``.

    Ties go to the first candidate in iteration order. Returns None
    only when ``candidates`` is empty.

    Example::

        >>> suggest("pign", ["ping", "pong", "help"])
        'ping'
    """
    closest = None
    min_distance = None
    for candidate in candidates:
        distance = levenshtein_distance(unknown, candidate)
        if min_distance is None or distance < min_distance:
            min_distance = distance
            closest = candidate
    return closest
