"""Heuristic prompt-injection detection.

Scans inbound text for instruction overrides, system-prompt extraction,
role-play jailbreaks and obfuscation tricks. Each matched rule adds its weight
to a risk score; the score maps to a risk level:

    0-1  none    (allowed silently)
    2-4  medium  (allowed, logged as a warning)
    5+   high    (rejected before the message is persisted)

Detection is a pure function of (text, context). No clock, no randomness, no I/O.
"""

import re
from collections import Counter
from dataclasses import dataclass, field

MEDIUM_RISK_SCORE = 2
HIGH_RISK_SCORE = 5

# (category, weight, patterns)
INJECTION_RULES: list[tuple[str, int, list[re.Pattern]]] = [
    ("instruction_override", 3, [
        re.compile(r"\b(?:ignore|disregard|forget|skip)\s+(?:all\s+)?(?:of\s+)?(?:the\s+|your\s+)?"
                   r"(?:previous|prior|earlier|above|preceding|original)\s+(?:instructions?|prompts?|directives?|rules)", re.I),
        re.compile(r"\boverride\s+(?:the\s+|your\s+)?(?:system|safety)\b", re.I),
        re.compile(r"\bno\s+longer\s+(?:bound|subject)\s+(?:by|to)\b", re.I),
        re.compile(r"\bnew\s+instructions?\s*:", re.I),
    ]),
    ("system_prompt_extraction", 3, [
        re.compile(r"\b(?:reveal|show|print|output|repeat|display|leak|dump|tell\s+me)\s+(?:me\s+)?(?:your|the)\s+"
                   r"(?:system\s+prompt|initial\s+prompt|hidden\s+prompt|system\s+instructions|instructions)", re.I),
        re.compile(r"\bwhat\s+(?:is|are)\s+your\s+(?:system\s+prompt|instructions|initial\s+prompt)", re.I),
        re.compile(r"\bbypass(?:ing|ed)?\s+(?:the\s+)?(?:system\s+)?(?:prompt|guidelines|filters?)", re.I),
    ]),
    ("role_play_jailbreak", 2, [
        re.compile(r"^\s*(?:you\s+)?are\s+now\b", re.I),
        re.compile(r"\bpretend\s+(?:that\s+)?you\s+(?:are|have)\s+no\s+(?:rules|restrictions|limits|guidelines)", re.I),
        re.compile(r"\b(?:developer|god|jailbreak)\s+mode\b", re.I),
        re.compile(r"\bdo\s+anything\s+now\b|\bDAN\b"),
        re.compile(r"\bact\s+as\s+(?:an?\s+)?(?:unrestricted|unfiltered|uncensored|jailbroken)\b", re.I),
    ]),
    ("jailbreak_keywords", 1, [
        re.compile(r"\bunrestricted\b|\buncensored\b", re.I),
        re.compile(r"\bwithout\s+(?:any\s+)?(?:limitations|restrictions|constraints)\b", re.I),
        re.compile(r"\bno\s+(?:filters?|restrictions?)\b", re.I),
        re.compile(r"\bdon'?t\s+refuse\b|\bmust\s+(?:always\s+)?comply\b", re.I),
    ]),
    ("prompt_markup", 2, [
        re.compile(r"\[(?:system|instruction|prompt|command)\]", re.I),
        re.compile(r"<<<\s*system\s*>>>|<\|im_start\|>|\{START_JAILBREAK\}", re.I),
        re.compile(r"```prompt", re.I),
    ]),
]

SUSPICIOUS_RULES: list[tuple[str, re.Pattern]] = [
    ("encoded_payload", re.compile(r"\b[A-Za-z0-9+/]{40,}={0,2}(?:\s|$)")),
    ("html_entities", re.compile(r"&#x?[0-9a-f]{2,5};", re.I)),
    ("template_injection", re.compile(r"\$\{[^}]*\}|\$\([^)]*\)|<%.*?%>")),
]

REPEATED_LINE_LIMIT = 5
SECTION_DELIMITERS = ("\n---", "\n===", "\n###")


@dataclass(frozen=True)
class InjectionVerdict:
    detected: bool
    risk_level: str  # none | medium | high
    patterns: list[str] = field(default_factory=list)
    risk_score: int = 0

    @property
    def is_high(self) -> bool:
        return self.risk_level == "high"


def _strip_context_titles(text: str, context_titles: tuple[str, ...]) -> str:
    # A list literally named "Start over" should not read as an injection attempt.
    for title in sorted(context_titles, key=len, reverse=True):
        if title:
            text = re.sub(re.escape(title), " ", text, flags=re.I)
    return text


def detect_injection(text: str, context_titles: tuple[str, ...] = ()) -> InjectionVerdict:
    """Score ``text`` for injection risk.

    ``context_titles`` are titles of the focused resource (and similar
    user-named entities) that are blanked out before scanning.
    """
    message = (text or "").strip()
    if not message:
        return InjectionVerdict(detected=False, risk_level="none")

    message = _strip_context_titles(message, context_titles)
    patterns: list[str] = []
    score = 0

    for category, weight, rules in INJECTION_RULES:
        for index, rule in enumerate(rules):
            if rule.search(message):
                patterns.append(f"{category}:{index}")
                score += weight

    for name, rule in SUSPICIOUS_RULES:
        if rule.search(message):
            patterns.append(f"suspicious:{name}")
            score += 1

    if sum(message.count(d) for d in SECTION_DELIMITERS) >= 2:
        patterns.append("suspicious:multiple_sections")
        score += 1

    lines = [line.strip() for line in message.splitlines() if line.strip()]
    if lines and max(Counter(lines).values()) >= REPEATED_LINE_LIMIT:
        patterns.append("suspicious:repetition")
        score += 2

    if score >= HIGH_RISK_SCORE:
        level = "high"
    elif score >= MEDIUM_RISK_SCORE:
        level = "medium"
    else:
        level = "none"

    return InjectionVerdict(detected=level != "none", risk_level=level, patterns=patterns, risk_score=score)
