"""Topic ontology, municipality gazetteer and noise vocabulary.

These are plain configuration values: build them once (defaults or YAML) and
pass them to the extractor, the query builder, the fallback scanner and the
relevance filter. Nothing here is mutated after construction.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import GENERIC_TOPIC, Topic
from .utils import fold, slugify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicCluster:
    """A canonical topic with its synonym cluster.

    Attributes:
        canonical: Canonical topic label (e.g. 'reati')
        synonyms: Search synonyms, canonical included
        national_publishers: Publishers that usually hold national statistics
            for this topic (used for publisher-biased variants and scoring)
    """

    canonical: str
    synonyms: Tuple[str, ...]
    national_publishers: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        folded = fold(text)
        return any(fold(s) in folded for s in self.synonyms)


DEFAULT_NATIONAL_PUBLISHERS = ("ISTAT",)

DEFAULT_TOPIC_CLUSTERS = (
    TopicCluster(
        canonical='reati',
        synonyms=('reati', 'delitti', 'criminalità', 'crimini', 'reati denunciati'),
        national_publishers=('ISTAT', "Ministero dell'Interno"),
    ),
    TopicCluster(
        canonical='incidenti stradali',
        synonyms=('incidenti stradali', 'incidenti', 'sinistri stradali', 'sicurezza stradale'),
        national_publishers=('ISTAT', 'ACI'),
    ),
    TopicCluster(
        canonical='popolazione',
        synonyms=('popolazione', 'residenti', 'abitanti', 'demografia'),
        national_publishers=('ISTAT',),
    ),
    TopicCluster(
        canonical='rifiuti',
        synonyms=('rifiuti', 'raccolta differenziata', 'rifiuti urbani'),
        national_publishers=('ISPRA',),
    ),
)


class TopicOntology:
    """Closed set of known synonym clusters."""

    def __init__(self, clusters: Iterable[TopicCluster] = DEFAULT_TOPIC_CLUSTERS):
        self.clusters: Tuple[TopicCluster, ...] = tuple(clusters)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TopicOntology":
        """Load from a mapping {canonical: {synonyms: [...], national_publishers: [...]}}.

        A bare list value is read as the synonym list.
        """
        clusters = []
        for canonical, spec in (data or {}).items():
            if isinstance(spec, dict):
                synonyms = spec.get('synonyms') or [canonical]
                publishers = spec.get('national_publishers') or DEFAULT_NATIONAL_PUBLISHERS
            else:
                synonyms = spec or [canonical]
                publishers = DEFAULT_NATIONAL_PUBLISHERS
            if canonical not in synonyms:
                synonyms = [canonical] + list(synonyms)
            clusters.append(TopicCluster(canonical=canonical, synonyms=tuple(synonyms),
                                         national_publishers=tuple(publishers)))
        logger.debug(f"Loaded ontology with {len(clusters)} topic clusters")
        return cls(clusters)

    def get(self, canonical: str) -> Optional[TopicCluster]:
        key = fold(canonical).strip()
        for cluster in self.clusters:
            if fold(cluster.canonical) == key:
                return cluster
        return None

    def match_text(self, text: str) -> Optional[TopicCluster]:
        """First cluster (declaration order) with a synonym occurring in text."""
        for cluster in self.clusters:
            if cluster.matches(text):
                return cluster
        return None

    def normalize(self, canonical: Optional[str], synonyms: Iterable[str] = ()) -> Topic:
        """Canonicalize a raw topic.

        The raw canonical is mapped when it equals a known canonical or synonym;
        otherwise any raw synonym belonging to a cluster selects that cluster.
        Unmapped topics pass through with their own synonyms.

        Args:
            canonical: Raw canonical label (may be empty)
            synonyms: Raw synonyms

        Returns:
            Normalized Topic (canonical is never empty)
        """
        raw = (canonical or "").strip().lower()
        raw_synonyms = [s.strip() for s in synonyms if isinstance(s, str) and s.strip()]

        if raw:
            for cluster in self.clusters:
                if fold(raw) in {fold(s) for s in (cluster.canonical,) + cluster.synonyms}:
                    return Topic(cluster.canonical, cluster.synonyms)

        for cluster in self.clusters:
            known = {fold(s) for s in cluster.synonyms}
            if any(fold(s) in known for s in raw_synonyms):
                return Topic(cluster.canonical, cluster.synonyms)

        if not raw:
            return Topic(GENERIC_TOPIC, tuple(raw_synonyms))
        return Topic(raw, tuple(raw_synonyms))

    def national_publishers(self, topic: Topic) -> Tuple[str, ...]:
        cluster = self.get(topic.canonical)
        if cluster and cluster.national_publishers:
            return cluster.national_publishers
        return DEFAULT_NATIONAL_PUBLISHERS


@dataclass(frozen=True)
class Place:
    """Gazetteer entry for one municipality."""

    city: str
    province: str = ""
    region: str = ""
    hosts: Tuple[str, ...] = ()

    @property
    def slug(self) -> str:
        return slugify(self.city)


DEFAULT_PLACES = (
    Place('Milano', 'Milano', 'Lombardia', ('dati.comune.milano.it',)),
    Place('Roma', 'Roma', 'Lazio', ('dati.comune.roma.it',)),
    Place('Torino', 'Torino', 'Piemonte', ('aperto.comune.torino.it',)),
    Place('Napoli', 'Napoli', 'Campania'),
    Place('Bologna', 'Bologna', 'Emilia-Romagna', ('opendata.comune.bologna.it',)),
    Place('Firenze', 'Firenze', 'Toscana', ('opendata.comune.fi.it',)),
    Place('Genova', 'Genova', 'Liguria'),
    Place('Venezia', 'Venezia', 'Veneto'),
    Place('Palermo', 'Palermo', 'Sicilia', ('opendata.comune.palermo.it',)),
    Place('Bari', 'Bari', 'Puglia'),
    Place('Verona', 'Verona', 'Veneto'),
    Place('Padova', 'Padova', 'Veneto'),
    Place('Trieste', 'Trieste', 'Friuli-Venezia Giulia'),
    Place('Reggio Emilia', 'Reggio Emilia', 'Emilia-Romagna'),
    Place('Vigone', 'Torino', 'Piemonte'),
)


class Gazetteer:
    """Small closed list of municipalities for regex city detection."""

    def __init__(self, places: Iterable[Place] = DEFAULT_PLACES):
        # Longest names first so 'Reggio Emilia' wins over a shorter prefix
        self.places: Tuple[Place, ...] = tuple(sorted(places, key=lambda p: -len(p.city)))
        self._patterns = [
            (re.compile(r'\b' + re.escape(fold(p.city)) + r'\b'), p) for p in self.places
        ]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Gazetteer":
        """Load from a mapping {city: {province, region, hosts}}."""
        places = []
        for city, spec in (data or {}).items():
            spec = spec or {}
            places.append(Place(
                city=city,
                province=spec.get('province', ''),
                region=spec.get('region', ''),
                hosts=tuple(spec.get('hosts') or ()),
            ))
        return cls(places)

    def find_city(self, text: str) -> Optional[Place]:
        """Word-boundary match of a known municipality in text."""
        folded = fold(text)
        for pattern, place in self._patterns:
            if pattern.search(folded):
                return place
        return None

    def lookup(self, name: Optional[str]) -> Optional[Place]:
        if not name:
            return None
        key = fold(name).strip()
        for place in self.places:
            if fold(place.city) == key:
                return place
        return None

    def authoritative_hosts(self, name: Optional[str]) -> List[str]:
        """Hosts publishing data for this place: declared ones, plus 'comune.<slug>'."""
        if not name:
            return []
        place = self.lookup(name)
        hosts = list(place.hosts) if place else []
        hosts.append(f"comune.{slugify(name).replace('-', '')}.")
        return hosts


# Datasets that look like election results are noise unless the question is electoral
ELECTION_WORDS = (
    'elezioni', 'elezione', 'referendum', 'voti', 'voto', 'quorum', 'affluenza',
    'sezioni', 'sezione', 'scrutinio', 'ballottaggio', 'schede', 'candidati',
    'liste', 'seggi',
)
ELECTION_TOPIC_TERMS = ('elezione', 'elezioni', 'referendum')


@dataclass(frozen=True)
class NoiseGuard:
    """Vocabulary of a noisy dataset family and the topics exempt from it."""

    words: Tuple[str, ...] = ELECTION_WORDS
    exempt_terms: Tuple[str, ...] = ELECTION_TOPIC_TERMS
    enabled: bool = True

    def applies_to(self, topic: Topic) -> bool:
        if not self.enabled:
            return False
        exempt = {fold(t) for t in self.exempt_terms}
        return not any(fold(t) in exempt for t in topic.terms + [topic.canonical])

    def is_noise(self, text: str, keys: Iterable[str] = ()) -> bool:
        folded = fold(text)
        folded_keys = [fold(k) for k in keys]
        return any(w in folded or any(w in k for k in folded_keys) for w in self.words)
