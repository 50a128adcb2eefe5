"""
Deduplicator

Drops extracted candidates whose title is near-identical to an existing task.

Similarity is normalized Levenshtein distance over lowercased titles:
    similarity = (max_len - distance) / max_len * 100

Scaling: every candidate is compared with every existing task, so a run costs
O(candidates x existing x title_length^2). Fine for hundreds of tasks; an
index (n-grams or embeddings) is needed well before tens of thousands.
"""

import logging
from typing import Iterable, List, Optional

from ..common.schemas import ExtractedTaskCandidate, Task

logger = logging.getLogger("comedia.scribe.deduplicator")

DEFAULT_SIMILARITY_THRESHOLD = 85.0


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning a into b"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two-row dynamic programming table
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def title_similarity(a: str, b: str) -> float:
    """Case-insensitive similarity percentage in [0, 100]"""
    a = a.lower()
    b = b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 100.0
    return (longest - levenshtein_distance(a, b)) / longest * 100


def is_duplicate(
    candidate: ExtractedTaskCandidate,
    existing_tasks: Iterable[Task],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> Optional[Task]:
    """Return the first existing task the candidate duplicates, if any."""
    for task in existing_tasks:
        if title_similarity(candidate.title, task.title) >= threshold:
            return task
    return None


def deduplicate(
    candidates: Iterable[ExtractedTaskCandidate],
    existing_tasks: Iterable[Task],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> List[ExtractedTaskCandidate]:
    """
    Filter candidates against existing tasks.

    Candidates are only compared with existing tasks, never with each other,
    so two near-identical candidates from the same batch both survive.
    Order of survivors is preserved.
    """
    existing = list(existing_tasks)
    kept = []
    for candidate in candidates:
        match = is_duplicate(candidate, existing, threshold)
        if match is not None:
            logger.info("Dropping duplicate %r (matches task %s: %r)", candidate.title, match.id, match.title)
            continue
        kept.append(candidate)
    return kept
