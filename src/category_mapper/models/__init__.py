from .taxonomy import (
    Category,
    CategoryMetadata,
    CategoryRef,
    SearchResult,
    TaxonomyAttribute,
    TaxonomySnapshot,
    Vertical,
    VerticalSnapshot,
)
from .mapping import MappingRecord, MappingResult, MappingStatistics, NavigationResult
from .llm import LLMResponse
from .selection import SelectionOption, build_selection_model
