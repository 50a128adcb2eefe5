"""
Statement Classifiers

Pluggable keyword/pattern families used to label transcript statements as
action items, decisions, or questions. Each family is an independent matcher
object, so a family can be tuned or replaced without touching the normalizer.

Labels are advisory context only; they never filter extraction input.
"""

import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence


ACTION_ITEM = "action_item"
DECISION = "decision"
QUESTION = "question"


class StatementMatcher(ABC):
    """A single classification family"""

    def __init__(self, category: str):
        self.category = category

    @abstractmethod
    def matches(self, statement: str) -> bool:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(category={self.category!r})"


class RegexMatcher(StatementMatcher):
    """Matches when any of its patterns is found (case-insensitive)"""

    def __init__(self, category: str, patterns: Iterable[str]):
        super().__init__(category)
        self._patterns = [re.compile(p, re.IGNORECASE) for p in patterns]

    @property
    def patterns(self) -> List[str]:
        return [p.pattern for p in self._patterns]

    def matches(self, statement: str) -> bool:
        return any(p.search(statement) for p in self._patterns)


class QuestionMatcher(StatementMatcher):
    def __init__(self):
        super().__init__(QUESTION)

    def matches(self, statement: str) -> bool:
        return "?" in statement


ACTION_ITEM_PATTERNS = [
    r"\b(will|shall|should|need to|have to|must)\s+\w+",
    r"\b(action item|to-?do|task):",
    r"\b(please|can you|could you)\s+\w+",
    r"\b(follow up|reach out|send|email|call)\b",
]

DECISION_PATTERNS = [
    r"\b(decided|agreed|decided to|let's go with)\b",
    r"\b(final decision|consensus)\b",
]

ACTION_ITEM_MATCHER = RegexMatcher(ACTION_ITEM, ACTION_ITEM_PATTERNS)
DECISION_MATCHER = RegexMatcher(DECISION, DECISION_PATTERNS)
QUESTION_MATCHER = QuestionMatcher()


def default_matchers() -> List[StatementMatcher]:
    """The built-in action item, decision and question families"""
    return [ACTION_ITEM_MATCHER, DECISION_MATCHER, QUESTION_MATCHER]


def classify(statement: str, matchers: Optional[Sequence[StatementMatcher]] = None) -> List[str]:
    """Return every category whose matcher accepts the statement."""
    if matchers is None:
        matchers = default_matchers()
    return [m.category for m in matchers if m.matches(statement)]
