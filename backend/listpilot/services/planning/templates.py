"""Planning domains and their default checklists."""

import re

# Ordered: the first keyword found in the request picks the domain.
DOMAIN_KEYWORDS: list[tuple[str, str]] = [
    ("roadshow", "roadshow"),
    ("road show", "roadshow"),
    ("tour", "roadshow"),
    ("conference", "event"),
    ("convention", "event"),
    ("summit", "event"),
    ("workshop", "event"),
    ("seminar", "event"),
    ("event", "event"),
    ("wedding", "wedding"),
    ("vacation", "travel"),
    ("holiday", "travel"),
    ("trip", "travel"),
    ("travel", "travel"),
    ("itinerary", "travel"),
    ("relocation", "moving"),
    ("moving", "moving"),
    ("move to", "moving"),
    ("launch", "project"),
    ("project", "project"),
    ("campaign", "project"),
    ("learn", "learning"),
    ("course", "learning"),
    ("study", "learning"),
    ("goal", "goals"),
    ("resolution", "goals"),
    ("habit", "goals"),
    ("shopping", "shopping"),
    ("groceries", "shopping"),
    ("grocery", "shopping"),
]

DEFAULT_DOMAIN = "general"


def _items(*rows: tuple[str, str, str]) -> tuple[dict, ...]:
    return tuple({"title": title, "item_type": item_type, "priority": priority} for title, item_type, priority in rows)


# Checklist for each child list generated from a location.
LOCATION_CHECKLISTS: dict[str, tuple[dict, ...]] = {
    "roadshow": _items(
        ("Book venue", "task", "high"),
        ("Confirm local speakers and hosts", "task", "high"),
        ("Arrange travel and accommodation", "task", "high"),
        ("Run local marketing and invitations", "task", "medium"),
        ("Coordinate AV and presentation setup", "task", "medium"),
        ("Arrange catering", "task", "medium"),
        ("Follow up with attendees", "task", "medium"),
    ),
    "event": _items(
        ("Book venue", "task", "high"),
        ("Arrange catering", "task", "medium"),
        ("Coordinate AV setup", "task", "medium"),
        ("Send invitations", "task", "medium"),
        ("Follow up with attendees", "task", "low"),
    ),
    "travel": _items(
        ("Book transportation", "task", "high"),
        ("Reserve accommodation", "task", "high"),
        ("Plan daily itinerary", "task", "medium"),
        ("Research local attractions", "task", "low"),
    ),
    "general": _items(
        ("Research the location", "task", "high"),
        ("Arrange logistics", "task", "medium"),
        ("Confirm local contacts", "task", "medium"),
        ("Review outcomes", "task", "low"),
    ),
}

# Checklist for each child list generated from a phase.
PHASE_CHECKLISTS: dict[str, tuple[dict, ...]] = {
    "learning": _items(
        ("Set learning objectives for this stage", "milestone", "high"),
        ("Study core material", "task", "high"),
        ("Complete a practice exercise", "task", "medium"),
        ("Reflect on progress", "note", "low"),
    ),
    "general": _items(
        ("Define goals for this phase", "milestone", "high"),
        ("Assign owners and resources", "task", "high"),
        ("Execute planned work", "task", "medium"),
        ("Review progress and adjust", "task", "medium"),
    ),
}

# Starter items for a flat list created without items.
STARTER_ITEMS: dict[str, tuple[dict, ...]] = {
    "event": _items(
        ("Set dates and duration", "milestone", "high"),
        ("Research and book venue", "task", "high"),
        ("Create speaker lineup", "task", "high"),
        ("Set up registration", "task", "medium"),
        ("Plan schedule and sessions", "task", "medium"),
        ("Arrange catering and refreshments", "task", "medium"),
    ),
    "roadshow": _items(
        ("Choose cities and dates", "milestone", "high"),
        ("Set overall budget", "task", "high"),
        ("Prepare presentation materials", "task", "medium"),
        ("Plan travel logistics", "task", "medium"),
    ),
    "travel": _items(
        ("Research destination and attractions", "task", "high"),
        ("Book flights", "task", "high"),
        ("Reserve accommodation", "task", "high"),
        ("Check passport and visa requirements", "task", "high"),
        ("Plan daily itinerary", "task", "medium"),
        ("Purchase travel insurance", "task", "medium"),
        ("Pack luggage", "task", "low"),
    ),
    "project": _items(
        ("Define project scope and objectives", "milestone", "high"),
        ("Identify stakeholders and team members", "task", "high"),
        ("Create project timeline", "task", "high"),
        ("Conduct kickoff meeting", "milestone", "medium"),
        ("Plan resource allocation", "task", "medium"),
    ),
    "goals": _items(
        ("Define specific, measurable outcomes", "milestone", "high"),
        ("Break down into smaller milestones", "milestone", "high"),
        ("Set target completion date", "milestone", "medium"),
        ("Create accountability system", "task", "medium"),
        ("Plan celebration for achievement", "reminder", "low"),
    ),
    "shopping": _items(
        ("Write down everything needed", "task", "high"),
        ("Set budget", "task", "medium"),
        ("Compare prices and stores", "task", "medium"),
        ("Check for coupons and discounts", "task", "low"),
    ),
    "wedding": _items(
        ("Set wedding date", "milestone", "high"),
        ("Book venue", "task", "high"),
        ("Create guest list", "task", "high"),
        ("Send save the dates", "task", "medium"),
        ("Choose wedding party", "task", "medium"),
    ),
    "moving": _items(
        ("Get quotes from moving companies", "task", "high"),
        ("Start packing non-essentials", "task", "medium"),
        ("Change address with utilities", "task", "medium"),
        ("Pack essentials box for the first day", "task", "low"),
    ),
    "learning": _items(
        ("Choose learning resources", "task", "high"),
        ("Set a weekly study schedule", "task", "high"),
        ("Pick a practice project", "task", "medium"),
        ("Review progress monthly", "reminder", "low"),
    ),
}


def detect_domain(text: str) -> str:
    lowered = (text or "").lower()
    for keyword, domain in DOMAIN_KEYWORDS:
        if re.search(rf"\b{re.escape(keyword)}", lowered):
            return domain
    return DEFAULT_DOMAIN


def location_checklist(domain: str) -> list[dict]:
    return [dict(item) for item in LOCATION_CHECKLISTS.get(domain, LOCATION_CHECKLISTS["general"])]


def phase_checklist(domain: str) -> list[dict]:
    return [dict(item) for item in PHASE_CHECKLISTS.get(domain, PHASE_CHECKLISTS["general"])]


def starter_items(domain: str) -> list[dict]:
    return [dict(item) for item in STARTER_ITEMS.get(domain, ())]
