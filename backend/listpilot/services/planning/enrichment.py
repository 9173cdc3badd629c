"""Turn a creation request and its analysis into a concrete list structure.

Pure transformation: no I/O, no clock. The same request and analysis always
give the same root, the same children in the same order, and the same items.
"""

import math
from dataclasses import dataclass, field

from listpilot.core.config import settings
from listpilot.services.planning.complexity import PlanningAnalysis
from listpilot.services.planning.templates import (
    LOCATION_CHECKLISTS,
    location_checklist,
    phase_checklist,
    starter_items,
)

GENERAL_CHILD_TITLE = "General"


@dataclass(frozen=True)
class PlannedList:
    title: str
    description: str | None = None
    items: tuple[dict, ...] = ()

    def as_dict(self) -> dict:
        return {"title": self.title, "description": self.description, "items": [dict(i) for i in self.items]}


@dataclass(frozen=True)
class PlannedStructure:
    root: PlannedList
    children: tuple[PlannedList, ...] = field(default_factory=tuple)

    @property
    def is_hierarchical(self) -> bool:
        return bool(self.children)


def _normalize_item(item) -> dict:
    if isinstance(item, str):
        return {"title": item}
    return {k: v for k, v in dict(item).items() if v is not None}


def merge_hints(description: str | None, analysis: PlanningAnalysis) -> str | None:
    """Append labeled facts to the description in a fixed order."""
    facts = []
    if analysis.budget:
        facts.append(f"Budget: {analysis.budget}")
    if analysis.duration:
        facts.append(f"Duration: {analysis.duration}")
    if analysis.dates:
        facts.append(f"Dates: {', '.join(analysis.dates)}")
    if analysis.locations:
        facts.append(f"Locations: {', '.join(analysis.locations)}")

    base = (description or "").strip()
    if not facts:
        return base or None
    return "\n".join([base, ""] + facts) if base else "\n".join(facts)


class StructureEnrichmentEngine:
    def __init__(self, max_children: int | None = None, chunk_size: int | None = None):
        self.max_children = settings.max_generated_children if max_children is None else max_children
        self.chunk_size = settings.decomposition_item_threshold if chunk_size is None else chunk_size

    def enrich(
        self,
        title: str,
        description: str | None,
        items: list | None,
        analysis: PlanningAnalysis,
        nested_groups: list[dict] | None = None,
    ) -> PlannedStructure:
        flat_items = [_normalize_item(i) for i in (items or [])]
        root_description = merge_hints(description, analysis)
        children, absorbs_flat_items = self._children(flat_items, analysis, nested_groups or [])

        if not children:
            root_items = flat_items or (starter_items(analysis.domain) if analysis.domain != "general" else [])
            return PlannedStructure(root=PlannedList(title, root_description, tuple(root_items)))

        if flat_items and not absorbs_flat_items:
            children.append(PlannedList(GENERAL_CHILD_TITLE, None, tuple(flat_items)))

        # The root's own items move into the children.
        return PlannedStructure(root=PlannedList(title, root_description, ()), children=tuple(children))

    def _children(
        self,
        flat_items: list[dict],
        analysis: PlanningAnalysis,
        nested_groups: list[dict],
    ) -> tuple[list[PlannedList], bool]:
        """Child lists plus whether they already hold the flat items."""
        if nested_groups:
            return [self._explicit_child(group, analysis.domain) for group in nested_groups], False

        if not analysis.needs_decomposition:
            return [], False

        if analysis.locations:
            return [
                PlannedList(location, f"Plan for {location}", tuple(location_checklist(analysis.domain)))
                for location in analysis.locations[: self.max_children]
            ], False

        if analysis.phases:
            return [
                PlannedList(phase, None, tuple(phase_checklist(analysis.domain)))
                for phase in analysis.phases[: self.max_children]
            ], False

        if "large_scope" in analysis.reasons and self.chunk_size > 0:
            parts = min(math.ceil(len(flat_items) / self.chunk_size), self.max_children)
            size = math.ceil(len(flat_items) / parts)
            return [
                PlannedList(f"Part {n + 1}", None, tuple(flat_items[n * size:(n + 1) * size]))
                for n in range(parts)
            ], True

        return [], False

    def _explicit_child(self, group: dict, domain: str) -> PlannedList:
        group_items = [_normalize_item(i) for i in group.get("items") or []]
        if not group_items:
            if domain != "general" and domain in LOCATION_CHECKLISTS:
                group_items = location_checklist(domain)
            else:
                group_items = phase_checklist(domain)
        return PlannedList(
            title=(group.get("title") or "").strip() or "Untitled",
            description=group.get("description"),
            items=tuple(group_items),
        )
