"""Rule-based complexity analysis for list creation requests.

Decides whether a request should become a single flat list or a root list with
child lists, and pulls out the hints the enrichment step needs: locations,
phases, budget, duration and dates. The same text always yields the same
analysis.
"""

import re
from dataclasses import dataclass, field

from listpilot.core.config import settings
from listpilot.services.planning.templates import detect_domain

WORD_NUMBERS = {
    "two": 2, "three": 3, "four": 4, "five": 5, "six": 6, "seven": 7,
    "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}
NUMBER = r"(\d{1,2}|" + "|".join(WORD_NUMBERS) + r")"

KNOWN_CITIES = (
    "Amsterdam", "Atlanta", "Austin", "Barcelona", "Berlin", "Boston", "Chicago", "Dallas",
    "Denver", "Dubai", "Dublin", "Hong Kong", "Houston", "Lisbon", "London", "Los Angeles",
    "Madrid", "Melbourne", "Miami", "Milan", "Montreal", "Mumbai", "Munich", "New York",
    "Paris", "Philadelphia", "Phoenix", "Prague", "Rome", "San Diego", "San Francisco",
    "Seattle", "Seoul", "Singapore", "Stockholm", "Sydney", "Tokyo", "Toronto", "Vancouver",
    "Vienna", "Washington", "Zurich",
)
# Longest first so "San Francisco" wins over a shorter overlapping name.
CITY_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(c) for c in sorted(KNOWN_CITIES, key=len, reverse=True)) + r")\b",
    re.I,
)
CITY_CANONICAL = {c.lower(): c for c in KNOWN_CITIES}

MULTI_LOCATION_WORDS = re.compile(
    r"\b(roadshow|road\s+show|tour|cities|locations|multi[-\s]?city|offices|regions|venues)\b", re.I
)
CITY_COUNT = re.compile(NUMBER + r"[-\s](?:city|cities|stop|location)s?\b", re.I)

PHASE_COUNT = re.compile(NUMBER + r"[-\s](week|month|quarter|phase|stage|sprint)s?\b", re.I)
PHASE_WORDS = re.compile(r"\b(phases|stages|milestones\s+plan|step[-\s]by[-\s]step)\b", re.I)
DEFAULT_PHASES = ("Phase 1: Planning", "Phase 2: Execution", "Phase 3: Review")
DEFAULT_STOPS = ("Stop 1", "Stop 2", "Stop 3")

BUDGET = re.compile(
    r"(?:budget\s+(?:of\s+|is\s+|:\s*)?)?([$€£]\s?\d[\d,]*(?:\.\d+)?\s?[kKmM]?\b|\d[\d,]*(?:\.\d+)?\s?(?:usd|eur|gbp|dollars|euros)\b)",
    re.I,
)
DURATION = re.compile(NUMBER + r"[-\s](day|week|month|year)s?\b", re.I)
QUARTER = re.compile(r"\bQ([1-4])(?:\s+(\d{4}))?\b", re.I)
MONTH = re.compile(
    r"\b(January|February|March|April|May|June|July|August|September|October|November|December)"
    r"(?:\s+(\d{1,2})(?:st|nd|rd|th)?)?(?:,?\s+(\d{4}))?\b"
)
ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")


@dataclass(frozen=True)
class PlanningAnalysis:
    needs_decomposition: bool
    reasons: tuple[str, ...] = ()  # multi_location | multi_phase | large_scope | nested
    locations: tuple[str, ...] = ()
    phases: tuple[str, ...] = ()
    budget: str | None = None
    duration: str | None = None
    dates: tuple[str, ...] = field(default_factory=tuple)
    domain: str = "general"


def _to_int(token: str) -> int:
    token = token.lower()
    return WORD_NUMBERS[token] if token in WORD_NUMBERS else int(token)


def _unique(values: list[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return tuple(seen)


class ComplexityAnalyzer:
    def __init__(self, item_threshold: int | None = None, max_children: int | None = None):
        self.item_threshold = settings.decomposition_item_threshold if item_threshold is None else item_threshold
        self.max_children = settings.max_generated_children if max_children is None else max_children

    def analyze(
        self,
        title: str,
        description: str | None = None,
        items: list | None = None,
        nested_groups: list | None = None,
    ) -> PlanningAnalysis:
        text = f"{title or ''}\n{description or ''}"
        items = items or []
        nested_groups = nested_groups or []
        reasons: list[str] = []

        locations = self._locations(text)
        phases = self._phases(text)
        if len(locations) >= 2 or MULTI_LOCATION_WORDS.search(text):
            reasons.append("multi_location")
            # Tour vocabulary without places or phases still gets one child per stop.
            if not locations and not phases:
                locations = DEFAULT_STOPS

        if phases:
            reasons.append("multi_phase")

        if len(items) > self.item_threshold:
            reasons.append("large_scope")

        if len(nested_groups) > 2:
            reasons.append("nested")

        return PlanningAnalysis(
            needs_decomposition=bool(reasons),
            reasons=tuple(reasons),
            locations=locations,
            phases=phases,
            budget=self._budget(text),
            duration=self._duration(text),
            dates=self._dates(text),
            domain=detect_domain(text),
        )

    def _locations(self, text: str) -> tuple[str, ...]:
        named = _unique([CITY_CANONICAL[m.group(1).lower()] for m in CITY_PATTERN.finditer(text)])
        if named:
            return named[: self.max_children]
        count_match = CITY_COUNT.search(text)
        if count_match:
            count = min(_to_int(count_match.group(1)), self.max_children)
            if count >= 2:
                return tuple(f"City {n}" for n in range(1, count + 1))
        return ()

    def _phases(self, text: str) -> tuple[str, ...]:
        match = PHASE_COUNT.search(text)
        if match:
            count = min(_to_int(match.group(1)), self.max_children)
            unit = match.group(2).lower()
            if count >= 2:
                return tuple(f"{unit.capitalize()} {n}" for n in range(1, count + 1))
        if PHASE_WORDS.search(text):
            return DEFAULT_PHASES
        return ()

    def _budget(self, text: str) -> str | None:
        match = BUDGET.search(text)
        return match.group(1).strip() if match else None

    def _duration(self, text: str) -> str | None:
        match = DURATION.search(text)
        if not match:
            return None
        count = _to_int(match.group(1))
        unit = match.group(2).lower()
        return f"{count} {unit}{'s' if count != 1 else ''}"

    def _dates(self, text: str) -> tuple[str, ...]:
        found: list[tuple[int, str]] = []
        for m in QUARTER.finditer(text):
            found.append((m.start(), f"Q{m.group(1)}" + (f" {m.group(2)}" if m.group(2) else "")))
        for m in MONTH.finditer(text):
            found.append((m.start(), " ".join(part for part in m.group(0).replace(",", "").split())))
        for m in ISO_DATE.finditer(text):
            found.append((m.start(), m.group(1)))
        return _unique([value for _, value in sorted(found)])
