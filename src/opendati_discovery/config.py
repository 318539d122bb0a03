"""Configuration management with dataclass, env, CLI, and YAML support."""

import logging
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .ontology import Gazetteer, NoiseGuard, TopicOntology

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_URL = "https://www.dati.gov.it/opendata/api/3/action"


@dataclass
class Config:
    """Configuration for one discovery pipeline.

    Attributes:
        catalog_url: CKAN action API base (package_search is appended)
        user_agent: User agent for catalog and resource requests
        search_timeout: Timeout in seconds for one catalog search
        resource_timeout: Timeout in seconds for a resource probe or fetch
        search_rows: Result-row cap for targeted variants
        broad_rows: Result-row cap for the broad geography scan
        max_candidates: Datasets surviving to sampling
        max_resource_bytes: Byte ceiling for a resource body
        max_sample_rows: Rows kept per sample
        max_csv_lines: Non-blank delimited lines read (header included)
        default_year_span: Years assumed ("last N") when the question has none
        strict_year_columns: Read row years only from 'anno'/'year'-like columns
        whole_word_geography: Match the place name as a whole word, not a substring
        quote_terms: Quote synonyms in query text for phrase matching
        append_years: Append the year list to variant query text
        include_term_variants: Add per-synonym variants after the four families
        topic_only_fallback: Run the broad scan on topic terms when geography is unknown
        noise_filter: Skip election-like datasets for non-electoral topics
        sampling_workers: Threads prefetching samples (1 = sequential)
        time_budget_seconds: Wall-clock budget for one invocation (None = unbounded)
        max_question_chars: Longest accepted question
        use_llm: Try remote entity extraction before local heuristics
        openai_api_key: OpenAI key (falls back to OPENAI_API_KEY)
        openai_model: Model for entity extraction
        llm_timeout: Timeout in seconds for the extraction call
        show_progress: Show a tqdm bar over sampling attempts
        topics: Optional ontology override ({canonical: {synonyms, national_publishers}})
        places: Optional gazetteer override ({city: {province, region, hosts}})
    """

    catalog_url: str = DEFAULT_CATALOG_URL
    user_agent: str = "opendati_discovery/1.0 (+https://www.dati.gov.it)"
    search_timeout: float = 15.0
    resource_timeout: float = 20.0

    # Discovery limits
    search_rows: int = 50
    broad_rows: int = 100
    max_candidates: int = 12

    # Sampling limits
    max_resource_bytes: int = 1_000_000
    max_sample_rows: int = 20
    max_csv_lines: int = 101

    # Query and relevance heuristics
    default_year_span: int = 5
    strict_year_columns: bool = False
    whole_word_geography: bool = False
    quote_terms: bool = True
    append_years: bool = False
    include_term_variants: bool = True
    topic_only_fallback: bool = False
    noise_filter: bool = True

    # Execution
    sampling_workers: int = 1
    time_budget_seconds: Optional[float] = 60.0
    max_question_chars: int = 2000

    # LLM settings (optional)
    use_llm: bool = True
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout: float = 20.0

    show_progress: bool = False

    # Ontology overrides
    topics: Dict[str, Any] = field(default_factory=dict)
    places: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate limits and load env variables."""
        self.catalog_url = self.catalog_url.rstrip('/')

        if self.use_llm and not self.openai_api_key:
            self.openai_api_key = os.getenv("OPENAI_API_KEY")

        for name in ('search_rows', 'broad_rows', 'max_candidates', 'max_resource_bytes',
                     'max_sample_rows', 'default_year_span', 'sampling_workers'):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")

        if self.max_csv_lines < 2:
            raise ValueError(f"max_csv_lines must be at least 2, got {self.max_csv_lines}")

        if self.time_budget_seconds is not None and self.time_budget_seconds <= 0:
            raise ValueError("time_budget_seconds must be positive or None")

        logger.debug(f"Configuration initialized for catalog {self.catalog_url}")

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file.

        Raises:
            ValueError: The file is not valid YAML, is not a mapping, or names
                unknown settings
        """
        with open(path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")

        known = {item.name for item in fields(cls)}
        unknown = sorted(str(key) for key in data if key not in known)
        if unknown:
            raise ValueError(f"Unknown settings in {path}: {', '.join(unknown)}")

        try:
            return cls(**data)
        except (TypeError, AttributeError) as e:
            raise ValueError(f"Invalid setting in {path}: {e}") from e

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        budget = os.getenv("OPENDATI_TIME_BUDGET", "60")
        return cls(
            catalog_url=os.getenv("OPENDATI_CATALOG_URL", DEFAULT_CATALOG_URL),
            search_rows=int(os.getenv("OPENDATI_SEARCH_ROWS", "50")),
            broad_rows=int(os.getenv("OPENDATI_BROAD_ROWS", "100")),
            max_resource_bytes=int(os.getenv("OPENDATI_MAX_BYTES", "1000000")),
            sampling_workers=int(os.getenv("OPENDATI_WORKERS", "1")),
            time_budget_seconds=float(budget) if budget else None,
            strict_year_columns=os.getenv("OPENDATI_STRICT_YEARS", "").lower() == "true",
            whole_word_geography=os.getenv("OPENDATI_WHOLE_WORD_GEO", "").lower() == "true",
            topic_only_fallback=os.getenv("OPENDATI_TOPIC_FALLBACK", "").lower() == "true",
            use_llm=os.getenv("OPENDATI_USE_LLM", "true").lower() == "true",
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        )

    def to_yaml(self, path: Path):
        """Save configuration to YAML file (the API key is never written)."""
        data = asdict(self)
        data.pop('openai_api_key', None)

        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    @property
    def search_url(self) -> str:
        return f"{self.catalog_url}/package_search"

    def build_ontology(self) -> TopicOntology:
        if self.topics:
            return TopicOntology.from_dict(self.topics)
        return TopicOntology()

    def build_gazetteer(self) -> Gazetteer:
        if self.places:
            return Gazetteer.from_dict(self.places)
        return Gazetteer()

    def build_noise_guard(self) -> NoiseGuard:
        return NoiseGuard(enabled=self.noise_filter)
