"""Tests for complexity analysis and structure enrichment."""

from listpilot.services.planning import ComplexityAnalyzer, StructureEnrichmentEngine
from listpilot.services.planning.enrichment import merge_hints
from listpilot.services.planning.templates import detect_domain, location_checklist, phase_checklist, starter_items


def _plan(title, description=None, items=None, nested_groups=None):
    analysis = ComplexityAnalyzer().analyze(title, description, items, nested_groups)
    structure = StructureEnrichmentEngine().enrich(title, description, items, analysis, nested_groups)
    return analysis, structure


def test_three_city_roadshow():
    analysis, structure = _plan("Plan a 3-city roadshow for Q2")

    assert analysis.needs_decomposition
    assert "multi_location" in analysis.reasons
    assert analysis.locations == ("City 1", "City 2", "City 3")
    assert analysis.dates == ("Q2",)
    assert analysis.domain == "roadshow"

    assert structure.is_hierarchical
    assert structure.root.items == ()
    assert [c.title for c in structure.children] == ["City 1", "City 2", "City 3"]
    for child in structure.children:
        assert list(child.items) == location_checklist("roadshow")
        assert child.items[0]["title"] == "Book venue"
    assert structure.root.description == "Dates: Q2\nLocations: City 1, City 2, City 3"


def test_enrichment_is_deterministic():
    first = _plan("Plan a 3-city roadshow for Q2", "Kick off in Austin", ["Print banners"])
    second = _plan("Plan a 3-city roadshow for Q2", "Kick off in Austin", ["Print banners"])
    assert first == second


def test_named_cities_keep_request_order():
    analysis, structure = _plan("Tour: New York, Chicago and San Francisco")
    assert analysis.locations == ("New York", "Chicago", "San Francisco")
    assert [c.description for c in structure.children] == [
        "Plan for New York", "Plan for Chicago", "Plan for San Francisco",
    ]


def test_flat_items_move_to_general_child():
    _, structure = _plan("Roadshow in Berlin and Paris", items=["Print banners", "Order swag"])
    assert structure.root.items == ()
    assert [c.title for c in structure.children] == ["Berlin", "Paris", "General"]
    assert [i["title"] for i in structure.children[-1].items] == ["Print banners", "Order swag"]


def test_tour_without_places_gets_default_stops():
    analysis, structure = _plan("Plan our product roadshow")
    assert analysis.needs_decomposition
    assert analysis.locations == ("Stop 1", "Stop 2", "Stop 3")
    assert structure.is_hierarchical
    assert structure.root.items == ()
    assert [c.title for c in structure.children] == ["Stop 1", "Stop 2", "Stop 3"]
    assert list(structure.children[0].items) == location_checklist("roadshow")


def test_phases_win_over_placeless_tour_words():
    analysis, structure = _plan("4-week regional tour")
    assert analysis.locations == ()
    assert [c.title for c in structure.children] == ["Week 1", "Week 2", "Week 3", "Week 4"]


def test_numbered_phases():
    analysis, structure = _plan("12-week fitness plan")
    assert analysis.reasons == ("multi_phase",)
    assert analysis.duration == "12 weeks"
    assert [c.title for c in structure.children] == [f"Week {n}" for n in range(1, 13)]
    assert list(structure.children[0].items) == phase_checklist("general")


def test_children_capped():
    analyzer = ComplexityAnalyzer(max_children=4)
    analysis = analyzer.analyze("20-week marathon training")
    assert analysis.phases == ("Week 1", "Week 2", "Week 3", "Week 4")


def test_learning_phases_use_learning_checklist():
    _, structure = _plan("Learn Spanish in 3 months")
    assert [c.title for c in structure.children] == ["Month 1", "Month 2", "Month 3"]
    assert list(structure.children[0].items) == phase_checklist("learning")


def test_large_flat_list_is_chunked():
    items = [f"errand {n}" for n in range(10)]
    analysis, structure = _plan("Weekend errands", items=items)
    assert analysis.reasons == ("large_scope",)
    assert [c.title for c in structure.children] == ["Part 1", "Part 2"]
    assert [len(c.items) for c in structure.children] == [5, 5]
    assert structure.root.items == ()


def test_item_threshold_is_exclusive():
    analysis = ComplexityAnalyzer(item_threshold=8).analyze("Chores", items=["x"] * 8)
    assert not analysis.needs_decomposition


def test_explicit_groups():
    groups = [
        {"title": "Venue", "items": [{"title": "Tour halls"}]},
        {"title": "Food"},
        {"title": "Music"},
    ]
    analysis, structure = _plan("Birthday party", nested_groups=groups)
    assert "nested" in analysis.reasons
    assert [c.title for c in structure.children] == ["Venue", "Food", "Music"]
    assert structure.children[0].items == ({"title": "Tour halls"},)
    # General requests fall back to the phase checklist for empty groups.
    assert list(structure.children[1].items) == phase_checklist("general")


def test_simple_request_stays_flat():
    analysis, structure = _plan("Weekly groceries")
    assert not analysis.needs_decomposition
    assert not structure.is_hierarchical
    assert list(structure.root.items) == starter_items("shopping")


def test_general_flat_list_gets_no_starter_items():
    _, structure = _plan("Misc")
    assert structure.root.items == ()
    assert structure.root.description is None


def test_given_items_win_over_starter_items():
    _, structure = _plan("Weekly groceries", items=["milk", {"title": "eggs", "priority": "high"}])
    assert structure.root.items == ({"title": "milk"}, {"title": "eggs", "priority": "high"})


def test_hint_extraction():
    analyzer = ComplexityAnalyzer()
    assert analyzer.analyze("Company offsite, budget of $5,000").budget == "$5,000"
    assert analyzer.analyze("Conference on March 3rd, 2027 and 2027-04-01").dates == ("March 3rd 2027", "2027-04-01")
    assert analyzer.analyze("Two-week trip").duration == "2 weeks"


def test_merge_hints_appends_after_blank_line():
    analysis = ComplexityAnalyzer().analyze("Trip to Lisbon for 5 days")
    assert merge_hints("Family trip", analysis) == "Family trip\n\nDuration: 5 days\nLocations: Lisbon"


def test_domain_detection_is_word_anchored():
    assert detect_domain("Plan the roadshow") == "roadshow"
    assert detect_domain("Contour drawing practice") == "general"
    assert detect_domain("Wedding shopping") == "wedding"
