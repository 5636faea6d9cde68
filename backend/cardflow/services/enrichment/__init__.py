"""
Link category enrichment: provider-specific facts and JSON-LD facts.
"""

from cardflow.services.enrichment.common import (
    ProviderEnrichment,
    build_raw_selector_map,
    merge_facts,
)
from cardflow.services.enrichment.providers import detect_provider, enrich_provider
from cardflow.services.enrichment.structured_data import (
    StructuredData,
    enrich_with_structured_data,
    fetch_structured_data,
    parse_structured_data,
)

__all__ = [
    "ProviderEnrichment",
    "StructuredData",
    "build_raw_selector_map",
    "detect_provider",
    "enrich_provider",
    "enrich_with_structured_data",
    "fetch_structured_data",
    "merge_facts",
    "parse_structured_data",
]
