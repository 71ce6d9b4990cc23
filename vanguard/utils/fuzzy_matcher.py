"""
Fuzzy name matching for Project Vanguard

Generators and players misspell unit ids ("raider1", "Raider-1", "alfa").
The translator resolves every target name through here before it touches
a unit.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from fuzzywuzzy import fuzz, process

EXACT = "exact"
AUTO_CORRECT = "auto_correct"
SUGGEST = "suggest"
NO_MATCH = "none"


@dataclass
class MatchResult:
    """
    Outcome of resolving one name.

    outcome is EXACT or AUTO_CORRECT when `match` can be used as-is,
    SUGGEST when it is only a guess, NO_MATCH otherwise.
    """
    query: str
    outcome: str = NO_MATCH
    match: Optional[str] = None
    score: int = 0
    suggestions: List[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.outcome in (EXACT, AUTO_CORRECT)

    def describe(self, noun: str = "unit") -> str:
        if self.accepted:
            return f"{noun} '{self.query}' -> {self.match}"
        if self.outcome == SUGGEST:
            return f"{noun} '{self.query}' not found. Did you mean '{self.match}'?"
        options = ", ".join(self.suggestions) if self.suggestions else "none"
        return f"{noun} '{self.query}' not found. Known: {options}"


def _normalize(name: str) -> str:
    """Case, spaces, underscores and hyphens don't distinguish unit ids."""
    return "".join(ch for ch in name.lower() if ch not in " _-")


class FuzzyMatcher:
    """
    Typo-tolerant matcher over unit ids.

    Thresholds (0-100 similarity):
    - 80+ : accept silently
    - 60-79: suggestion only, caller must not act on it
    - <60  : no match, report the closest names

    Short ids (<=4 chars) get lower thresholds (70/50) and partial_ratio,
    otherwise "doc" could never match "dok". 1-2 char queries only match
    exactly.
    """

    AUTO_CORRECT_THRESHOLD = 80
    SUGGEST_THRESHOLD = 60

    SHORT_NAME_AUTO_CORRECT = 70
    SHORT_NAME_SUGGEST = 50

    def _get_thresholds(self, query: str) -> Tuple[int, int]:
        if len(query) <= 2:
            return (100, self.SHORT_NAME_SUGGEST)
        if len(query) <= 4:
            return (self.SHORT_NAME_AUTO_CORRECT, self.SHORT_NAME_SUGGEST)
        return (self.AUTO_CORRECT_THRESHOLD, self.SUGGEST_THRESHOLD)

    def _score(self, query: str, candidate: str) -> int:
        ratio_score = fuzz.ratio(query, candidate)

        # "r" would partially match every raider at 100
        if len(query) <= 2:
            return ratio_score

        if len(query) <= 4 or len(candidate) <= 4:
            return max(ratio_score, fuzz.partial_ratio(query, candidate))

        return ratio_score

    def best(self, query: str, candidates: List[str]) -> Optional[Tuple[str, int]]:
        """Highest-scoring candidate and its score, ties going to the first."""
        if not query or not candidates:
            return None
        normalized = _normalize(query)
        best_match, best_score = None, -1
        for candidate in candidates:
            score = self._score(normalized, _normalize(candidate))
            if score > best_score:
                best_match, best_score = candidate, score
        return best_match, best_score

    def resolve(self, query: str, candidates: List[str]) -> MatchResult:
        """
        Resolve a name against candidates.

        Example:
            >>> FuzzyMatcher().resolve("raider1", ["raider_1", "brute"]).match
            'raider_1'
        """
        result = MatchResult(query=query or "")
        if not query or not candidates:
            return result

        normalized = _normalize(query)
        for candidate in candidates:
            if _normalize(candidate) == normalized:
                result.outcome, result.match, result.score = EXACT, candidate, 100
                return result

        auto_threshold, suggest_threshold = self._get_thresholds(normalized)
        match, score = self.best(query, candidates)
        if score >= auto_threshold:
            result.outcome, result.match, result.score = AUTO_CORRECT, match, score
        elif score >= suggest_threshold:
            result.outcome, result.match, result.score = SUGGEST, match, score
            result.suggestions = [match]
        else:
            closest = process.extract(query, candidates, scorer=fuzz.ratio, limit=3)
            result.suggestions = [name for name, _ in closest]
        return result
