"""Ordered first-match-wins rule lists.

Classifiers in this package (risk level, review state, finding category,
severity and type, effort complexity) are expressed as a list of rules
evaluated top to bottom. The first rule whose pattern matches decides the
result; ties are impossible by construction. A rule with no pattern
(disabled in the scope config) never matches.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Rule(Generic[T]):
    """A pattern and the value it yields when it matches."""

    value: T
    pattern: re.Pattern | None

    def matches(self, text: str) -> bool:
        return self.pattern is not None and self.pattern.search(text) is not None


def first_match(rules: Sequence[Rule[T]], text: str, default: T) -> T:
    """Return the value of the first matching rule, else default."""
    for rule in rules:
        if rule.matches(text):
            return rule.value
    return default
