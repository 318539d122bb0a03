"""Relevance filtering of sampled rows against geography and year range."""

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import Config
from .models import Accepted, CatalogDataset, NormalizedQuery, Rejected, Resource, Sample
from .ontology import Gazetteer, NoiseGuard
from .utils import current_year, find_years, fold

logger = logging.getLogger(__name__)

# Column names read in strict year mode ('anno', 'Anno_riferimento', 'year', ...)
YEAR_COLUMN_PATTERN = re.compile(r'(?:^|[^a-z])(?:anno|anni|year|years)(?:$|[^a-z])')


def default_year_range(span: int, this_year: int) -> Tuple[int, int]:
    """Range for questions without years: the last `span` years up to `this_year`."""
    return this_year - span + 1, this_year


def row_text(row: Dict[str, Any]) -> str:
    """Serialized form of a row, used for substring tests."""
    return json.dumps(row, ensure_ascii=False, default=str)


def is_year_column(name: str) -> bool:
    return bool(YEAR_COLUMN_PATTERN.search(fold(name)))


def row_years(row: Dict[str, Any], strict: bool = False) -> List[int]:
    """Year tokens found in a row.

    Args:
        row: Sampled record
        strict: Only look at values of year-like columns instead of the whole row

    Returns:
        Years in order of appearance
    """
    if not strict:
        return find_years(row_text(row))
    years: List[int] = []
    for key, value in row.items():
        if is_year_column(str(key)):
            years.extend(find_years(str(value)))
    return years


def mentions(text: str, token: str, whole_word: bool = False) -> bool:
    """Whether `text` names `token`, ignoring case and accents.

    A plain containment test matches "Roma" inside "Emilia-Romagna";
    `whole_word` requires the token to stand between non-alphanumerics.
    """
    needle, haystack = fold(token), fold(text)
    if not whole_word:
        return needle in haystack
    return re.search(rf'(?<![a-z0-9]){re.escape(needle)}(?![a-z0-9])', haystack) is not None


class RelevanceFilter:
    """Layered acceptance test: row level, then dataset level, then year only."""

    def __init__(self, config: Config, gazetteer: Gazetteer,
                 noise_guard: Optional[NoiseGuard] = None,
                 clock: Callable[[], int] = current_year):
        self.config = config
        self.gazetteer = gazetteer
        self.noise_guard = noise_guard
        self.clock = clock

    def year_range(self, query: NormalizedQuery) -> Tuple[int, int]:
        return query.year_range or default_year_range(self.config.default_year_span, self.clock())

    def _in_range(self, rows: Iterable[Dict[str, Any]], year_range: Tuple[int, int]) -> bool:
        start, end = year_range
        strict = self.config.strict_year_columns
        return any(start <= y <= end for row in rows for y in row_years(row, strict))

    def _authoritative_host(self, resource: Resource, token: str) -> bool:
        host = resource.host
        if not host:
            return False
        return any(h in host for h in self.gazetteer.authoritative_hosts(token))

    def evaluate(self, sample: Sample, dataset: CatalogDataset, resource: Resource,
                 query: NormalizedQuery, year_range: Optional[Tuple[int, int]] = None):
        """Decide whether a sample answers the question.

        Args:
            sample: Rows read from the resource
            dataset: Dataset owning the resource
            resource: Sampled resource
            query: Normalized question
            year_range: Inclusive [start, end]; defaults to the query years or
                the last `default_year_span` years

        Returns:
            Accepted with the rows to hand over, or Rejected with the reason
        """
        if not sample.rows:
            return Rejected(sample.note or 'empty_sample')

        cap = self.config.max_sample_rows
        start, end = year_range or self.year_range(query)

        if self.noise_guard is not None and self.noise_guard.applies_to(query.topic):
            keys = {str(key) for row in sample.rows[:3] for key in row}
            labels = ' '.join(dataset.tags + dataset.groups)
            if self.noise_guard.is_noise(f"{dataset.title} {dataset.description} {labels}", keys):
                return Rejected('noise_dataset')

        token = query.geography.token
        if not token:
            if self._in_range(sample.rows, (start, end)):
                return Accepted(tuple(sample.rows[:cap]), 'year_only')
            return Rejected('no_year_in_range')

        whole_word = self.config.whole_word_geography
        matching = [row for row in sample.rows if mentions(row_text(row), token, whole_word)]
        if matching:
            if self._in_range(matching, (start, end)):
                return Accepted(tuple(matching[:cap]), 'row_level')
            return Rejected('rows_out_of_range')

        if mentions(dataset.metadata_text, token, whole_word) or self._authoritative_host(resource, token):
            metadata_years = find_years(f"{dataset.metadata_text} {' '.join(dataset.tags)}")
            if (self._in_range(sample.rows, (start, end))
                    or any(start <= y <= end for y in metadata_years)):
                return Accepted(tuple(sample.rows[:cap]), 'dataset_level')
            return Rejected('dataset_out_of_range')

        logger.debug(f"relevance:noGeo {token!r} not in rows or metadata of {dataset.title!r}")
        return Rejected('geography_not_found')
