"""Data model shared by every stage of the discovery pipeline."""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse

GENERIC_TOPIC = "generico"
MAX_DATASETS = 12
MAX_ROWS = 20


@dataclass(frozen=True)
class Geography:
    """Normalized geography facet of a question."""

    city: Optional[str] = None
    province: Optional[str] = None
    region: Optional[str] = None
    nation: str = "Italia"

    @property
    def token(self) -> Optional[str]:
        """Most specific place name known (city, then province, then region)."""
        return self.city or self.province or self.region or None

    @property
    def is_known(self) -> bool:
        return self.token is not None


@dataclass(frozen=True)
class Topic:
    """Canonical topic plus the synonyms used for catalog search."""

    canonical: str = GENERIC_TOPIC
    synonyms: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.canonical or not self.canonical.strip():
            object.__setattr__(self, 'canonical', GENERIC_TOPIC)
        object.__setattr__(self, 'synonyms', tuple(self.synonyms))

    @property
    def terms(self) -> List[str]:
        """Ordered, deduplicated search terms (synonyms, or the canonical name)."""
        source = self.synonyms or (self.canonical,)
        seen = set()
        terms = []
        for term in source:
            key = term.strip().lower()
            if key and key not in seen:
                seen.add(key)
                terms.append(term.strip())
        return terms

    @property
    def is_generic(self) -> bool:
        return self.canonical == GENERIC_TOPIC and not self.synonyms


@dataclass(frozen=True)
class NormalizedQuery:
    """Question reduced to (geography, years, topic)."""

    original: str
    geography: Geography = field(default_factory=Geography)
    years: Tuple[int, ...] = ()
    topic: Topic = field(default_factory=Topic)
    notes: Tuple[str, ...] = ()

    def __post_init__(self):
        valid = sorted({int(y) for y in self.years if 1000 <= int(y) <= 9999})
        object.__setattr__(self, 'years', tuple(valid))
        object.__setattr__(self, 'notes', tuple(self.notes))

    @property
    def year_range(self) -> Optional[Tuple[int, int]]:
        if not self.years:
            return None
        return self.years[0], self.years[-1]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['years'] = list(self.years)
        data['topic']['synonyms'] = list(self.topic.synonyms)
        data['notes'] = list(self.notes)
        return data


@dataclass(frozen=True)
class SearchRequest:
    """One `package_search` call: free text, facet filters, sort and row cap."""

    query: str
    filters: Tuple[str, ...] = ()
    sort: Optional[str] = "metadata_modified desc"
    rows: int = 50

    @property
    def key(self) -> Tuple[str, Tuple[str, ...]]:
        """Identity used to collapse duplicate requests."""
        return self.query, tuple(sorted(self.filters))

    def to_params(self) -> List[Tuple[str, Any]]:
        """Render as request parameters (repeated `fq` entries allowed)."""
        params: List[Tuple[str, Any]] = [('q', self.query), ('rows', self.rows)]
        for fq in self.filters:
            params.append(('fq', fq))
        if self.sort:
            params.append(('sort', self.sort))
        return params


@dataclass(frozen=True)
class QueryVariant:
    """A labelled, prioritized catalog search (1 = tried first)."""

    label: str
    request: SearchRequest
    priority: int
    rationale: str = ""


def infer_kind(fmt: str, url: str) -> Optional[str]:
    """Return 'json', 'csv' or None from a declared format and the URL suffix."""
    fmt = (fmt or "").lower()
    path = urlparse(url or "").path.lower()
    if 'json' in fmt or path.endswith('.json'):
        return 'json'
    if 'csv' in fmt or path.endswith('.csv'):
        return 'csv'
    return None


@dataclass(frozen=True)
class Resource:
    """Downloadable file attached to a dataset."""

    url: str
    format: str = ""
    mimetype: str = ""
    name: Optional[str] = None

    @property
    def declared_kind(self) -> Optional[str]:
        return infer_kind(self.format or self.mimetype, self.url)

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc.lower()

    @classmethod
    def from_ckan(cls, data: Dict[str, Any]) -> "Resource":
        return cls(
            url=str(data.get('url') or ""),
            format=str(data.get('format') or ""),
            mimetype=str(data.get('mimetype') or ""),
            name=data.get('name'),
        )


@dataclass(frozen=True)
class DatasetSummary:
    title: str
    source: Optional[str]
    resources: int


@dataclass(frozen=True)
class CatalogDataset:
    """Catalog entry, as returned by the catalog search."""

    title: str
    description: str = ""
    organization_title: str = ""
    organization_name: str = ""
    holder_name: str = ""
    tags: Tuple[str, ...] = ()
    groups: Tuple[str, ...] = ()
    resources: Tuple[Resource, ...] = ()

    @classmethod
    def from_ckan(cls, data: Dict[str, Any]) -> "CatalogDataset":
        """Build from a CKAN package dict, tolerating missing or null fields."""
        organization = data.get('organization') or {}
        tags = [t.get('display_name') or t.get('name') or "" for t in data.get('tags') or []
                if isinstance(t, dict)]
        groups = [g.get('title') or g.get('name') or "" for g in data.get('groups') or []
                  if isinstance(g, dict)]
        resources = [Resource.from_ckan(r) for r in data.get('resources') or []
                     if isinstance(r, dict)]
        return cls(
            title=str(data.get('title') or ""),
            description=str(data.get('notes') or ""),
            organization_title=str(organization.get('title') or ""),
            organization_name=str(organization.get('name') or ""),
            holder_name=str(data.get('holder_name') or ""),
            tags=tuple(t for t in tags if t),
            groups=tuple(g for g in groups if g),
            resources=tuple(resources),
        )

    @property
    def publisher(self) -> Optional[str]:
        return self.organization_title or self.holder_name or self.organization_name or None

    @property
    def publisher_text(self) -> str:
        return f"{self.organization_title} {self.holder_name} {self.organization_name}"

    @property
    def metadata_text(self) -> str:
        """Title, description and publisher identity as one string."""
        return f"{self.title} {self.description} {self.publisher_text}"

    def summary(self) -> DatasetSummary:
        return DatasetSummary(title=self.title, source=self.publisher,
                              resources=len(self.resources))


@dataclass
class Sample:
    """Capped rows read from one resource, with a note on how they were obtained."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    note: str = ""

    def __bool__(self) -> bool:
        return bool(self.rows)


@dataclass(frozen=True)
class Accepted:
    rows: Tuple[Dict[str, Any], ...]
    reason: str


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class Failed:
    error: str


Outcome = Union[Accepted, Rejected, Failed]


@dataclass
class PipelineResult:
    """The only value handed to the answer-synthesis consumer."""

    datasets: List[DatasetSummary] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    has_real_data: bool = False
    normalized: Optional[NormalizedQuery] = None
    variant_label: Optional[str] = None
    attempts: int = 0
    message: str = ""

    def __post_init__(self):
        self.datasets = list(self.datasets)[:MAX_DATASETS]
        self.rows = list(self.rows)[:MAX_ROWS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'datasets': [asdict(d) for d in self.datasets],
            'rows': self.rows,
            'hasRealData': self.has_real_data,
            'normalized': self.normalized.to_dict() if self.normalized else None,
            'variant': self.variant_label,
            'attempts': self.attempts,
            'message': self.message,
        }
