"""
opendati_discovery: find real rows in Italian open-data catalogs for a question.

Features:
- Question normalization (geography, years, topic) with OpenAI and a local fallback
- Prioritized CKAN search variants with early exit
- Broad geography scan with topic-agnostic dataset scoring
- Bounded JSON/CSV sampling and layered relevance filtering
"""

__version__ = "1.0.0"

from .config import Config
from .models import NormalizedQuery, PipelineResult
from .pipeline import DiscoveryPipeline, InvalidQuestionError
from .utils import setup_logging

__all__ = [
    "Config",
    "DiscoveryPipeline",
    "InvalidQuestionError",
    "NormalizedQuery",
    "PipelineResult",
    "setup_logging",
    "__version__",
]
