"""Query variant generation for catalog search."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from .config import Config
from .models import Geography, QueryVariant, SearchRequest, Topic
from .ontology import TopicOntology
from .utils import slugify

logger = logging.getLogger(__name__)

# Variant families, tried in this order (priority = position)
PRIORITY_MUNICIPAL_HOLDER = 1
PRIORITY_MUNICIPAL_ORG = 2
PRIORITY_NATIONAL = 3
PRIORITY_TEXT_ONLY = 4
PRIORITY_TERM_WITH_GEO = 5
PRIORITY_TERM_ONLY = 6


def _quote(term: str, quote: bool) -> str:
    term = term.replace('"', '')
    return f'"{term}"' if quote else term


def build_query_text(terms: Sequence[str], geo_token: Optional[str] = None,
                     years: Sequence[int] = (), quote: bool = True) -> str:
    """Build the free-text query: OR-joined synonyms, then geography, then years.

    Args:
        terms: Topic synonyms (union, already deduplicated)
        geo_token: Place name appended as an extra required term
        years: Years appended as an OR group
        quote: Quote each term for phrase matching

    Returns:
        Query text, e.g. '("reati" OR "delitti") "Milano"'
    """
    parts = []
    if terms:
        joined = ' OR '.join(_quote(t, quote) for t in terms)
        parts.append(f"({joined})" if len(terms) > 1 else joined)
    if geo_token:
        parts.append(_quote(geo_token, quote))
    if years:
        parts.append('(' + ' OR '.join(str(y) for y in years) + ')')
    return ' '.join(parts).strip()


def municipal_holder_filter(city: str) -> str:
    return f'holder_name:"COMUNE DI {city.upper()}"'


def municipal_org_filter(city: str) -> str:
    return f"organization:comune-di-{slugify(city)}"


def publishers_filter(publishers: Sequence[str]) -> str:
    """Single OR-ed holder filter (separate fq entries would be ANDed)."""
    quoted = ' OR '.join(f'"{p}"' for p in publishers)
    return f"holder_name:({quoted})"


def build_variants(topic: Topic, geography: Geography, ontology: TopicOntology,
                   config: Config, years: Sequence[int] = ()) -> List[QueryVariant]:
    """Build the ordered list of catalog search variants.

    Families (lower priority number is tried first):
        1. Municipal publisher name filter (city known)
        2. Municipal organization slug filter (city known)
        3. National publishers for the topic
        4. Plain text query, no filters
        5-6. Per-synonym text queries (optional)

    Args:
        topic: Normalized topic
        geography: Normalized geography
        ontology: Topic ontology (for national publishers)
        config: Pipeline configuration
        years: Years to append when config.append_years is set

    Returns:
        Variants sorted by priority, duplicates (same text and filters) collapsed
        onto their earliest occurrence
    """
    terms = [] if topic.is_generic else topic.terms
    geo_token = geography.token
    if not terms and not geo_token:
        logger.info("No topic and no geography: no search variants")
        return []

    rows = config.search_rows
    year_bit = list(years) if config.append_years else []
    text = build_query_text(terms, geo_token, year_bit, config.quote_terms)

    def variant(label: str, query: str, filters: Tuple[str, ...], priority: int,
                rationale: str) -> QueryVariant:
        return QueryVariant(
            label=label,
            request=SearchRequest(query=query, filters=filters, rows=rows),
            priority=priority,
            rationale=rationale,
        )

    candidates: List[QueryVariant] = []

    if geography.city:
        city = geography.city
        candidates.append(variant(
            f"Comune di {city} (holder), sinonimi tema + città", text,
            (municipal_holder_filter(city),), PRIORITY_MUNICIPAL_HOLDER,
            "Civic datasets are often published under the municipality's name."))
        candidates.append(variant(
            f"Comune di {city} (organization), sinonimi tema + città", text,
            (municipal_org_filter(city),), PRIORITY_MUNICIPAL_ORG,
            "Some catalogs classify by organization slug instead of holder name."))

    if terms:
        publishers = ontology.national_publishers(topic)
        candidates.append(variant(
            f"Nazionale ({', '.join(publishers)}), sinonimi tema + geografia", text,
            (publishers_filter(publishers),), PRIORITY_NATIONAL,
            "Many social statistics are published nationally."))

    candidates.append(variant(
        "Solo testo, nessun filtro", text, (), PRIORITY_TEXT_ONLY,
        "Generic fallback on indexed metadata."))

    if config.include_term_variants and len(terms) > 1:
        for term in terms:
            if geo_token:
                candidates.append(variant(
                    f"h:term+geo:{term}", build_query_text([term], geo_token, quote=False), (),
                    PRIORITY_TERM_WITH_GEO, "Single synonym with geography."))
        for term in terms:
            candidates.append(variant(
                f"h:term:{term}", build_query_text([term], quote=False), (),
                PRIORITY_TERM_ONLY, "Single synonym, widest text match."))

    variants = deduplicate_variants(candidates)
    logger.debug(f"Built {len(variants)} variants ({len(candidates) - len(variants)} duplicates dropped)")
    return variants


def deduplicate_variants(variants: Sequence[QueryVariant]) -> List[QueryVariant]:
    """Sort by priority (stable) and drop repeated requests, keeping the first."""
    ordered = sorted(variants, key=lambda v: v.priority)
    seen: Dict[Tuple, QueryVariant] = {}
    for v in ordered:
        if v.request.key not in seen:
            seen[v.request.key] = v
    return list(seen.values())


def build_search_url(search_url: str, request: SearchRequest) -> str:
    """Render the full GET URL of a search request (for logs and plans)."""
    return requests.Request('GET', search_url, params=request.to_params()).prepare().url
