from listpilot.services.planning.complexity import ComplexityAnalyzer, PlanningAnalysis
from listpilot.services.planning.enrichment import PlannedList, PlannedStructure, StructureEnrichmentEngine

__all__ = [
    "ComplexityAnalyzer",
    "PlannedList",
    "PlannedStructure",
    "PlanningAnalysis",
    "StructureEnrichmentEngine",
]
