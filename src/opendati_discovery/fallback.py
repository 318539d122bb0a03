"""Broad fallback scan: one wide geography query, ranked by topic relevance."""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from .catalog import CatalogClient, CatalogError
from .config import Config
from .models import CatalogDataset, Geography, SearchRequest, Topic
from .ontology import TopicOntology
from .query_builder import build_query_text
from .utils import fold

logger = logging.getLogger(__name__)

# Score increments
TEXT_HIT = 6
TAG_HIT = 4
GROUP_HIT = 2
PUBLISHER_HIT = 1
JSON_RESOURCE = 2
CSV_RESOURCE = 2


def score_dataset_for_topic(dataset: CatalogDataset, terms: Sequence[str],
                            authoritative_publishers: Sequence[str] = ()) -> int:
    """Score how well a dataset matches a topic.

    The score depends only on the given terms and publishers, never on a
    specific topic name.

    Args:
        dataset: Candidate dataset
        terms: Topic synonyms
        authoritative_publishers: Publishers authoritative for the topic domain

    Returns:
        Integer score (0 means no evidence at all)
    """
    folded_terms = list(dict.fromkeys(fold(t) for t in terms if t and t.strip()))

    def hit(haystack: str) -> bool:
        folded = fold(haystack)
        return any(t in folded for t in folded_terms)

    score = 0

    if hit(f"{dataset.title} {dataset.description}"):
        score += TEXT_HIT
    if any(hit(tag) for tag in dataset.tags):
        score += TAG_HIT
    if any(hit(group) for group in dataset.groups):
        score += GROUP_HIT

    publisher = fold(dataset.publisher_text)
    for name in authoritative_publishers:
        if name and fold(name) in publisher:
            score += PUBLISHER_HIT

    kinds = {r.declared_kind for r in dataset.resources}
    if 'json' in kinds:
        score += JSON_RESOURCE
    if 'csv' in kinds:
        score += CSV_RESOURCE

    return score


def rank_datasets(datasets: Sequence[CatalogDataset], terms: Sequence[str],
                  authoritative_publishers: Sequence[str] = (),
                  limit: int = 12) -> List[Tuple[CatalogDataset, int]]:
    """Score, sort descending (stable), drop non-positive scores, keep the top `limit`."""
    scored = [(ds, score_dataset_for_topic(ds, terms, authoritative_publishers)) for ds in datasets]
    scored.sort(key=lambda pair: -pair[1])
    return [pair for pair in scored if pair[1] > 0][:limit]


class BroadFallbackScanner:
    """Wide search scoped only by geography, used when every targeted variant is empty."""

    def __init__(self, client: CatalogClient, config: Config, ontology: TopicOntology):
        self.client = client
        self.config = config
        self.ontology = ontology

    def build_request(self, geography: Geography, topic: Topic) -> Optional[SearchRequest]:
        if geography.is_known:
            return SearchRequest(query=geography.token, rows=self.config.broad_rows)
        if self.config.topic_only_fallback and not topic.is_generic:
            return SearchRequest(query=build_query_text(topic.terms, quote=False),
                                 rows=self.config.broad_rows)
        return None

    def scan(self, geography: Geography, topic: Topic,
             cancelled: Optional[Callable[[], bool]] = None) -> List[CatalogDataset]:
        """Return up to `max_candidates` positively-scored datasets, best first."""
        request = self.build_request(geography, topic)
        if request is None:
            logger.info("broad:skip (no geography)")
            return []
        if cancelled is not None and cancelled():
            return []

        logger.info(f"broad:try q={request.query!r} rows={request.rows}")
        try:
            response = self.client.package_search(request)
        except CatalogError as e:
            logger.warning(f"broad:failed {e}")
            return []

        ranked = rank_datasets(
            response.results,
            topic.terms,
            self.ontology.national_publishers(topic),
            limit=self.config.max_candidates,
        )
        logger.info("broad:rankTop " + ", ".join(
            f"{ds.title[:40]!r}={score}" for ds, score in ranked[:5]))

        if not ranked:
            logger.info("broad:noCandidates")
        return [ds for ds, _ in ranked]
