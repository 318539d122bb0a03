"""Read-only client for the CKAN catalog search endpoint."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import Config
from .models import CatalogDataset, SearchRequest

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """A catalog search failed (transport, status, or payload)."""


@dataclass
class SearchResponse:
    success: bool
    count: int
    results: List[CatalogDataset] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.count > 0 and bool(self.results)


def create_session(user_agent: str, pool_size: int = 10) -> requests.Session:
    """Create a requests session without retries.

    Failed catalog or resource calls are never retried: the pipeline moves on
    to the next candidate instead.

    Args:
        user_agent: User-Agent header value
        pool_size: Connection pool size per host

    Returns:
        Configured session
    """
    session = requests.Session()

    retry_strategy = Retry(total=0, raise_on_status=False)

    adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=pool_size,
                          pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        'User-Agent': user_agent,
        'Accept': 'application/json,text/csv;q=0.9,*/*;q=0.8',
        'Accept-Language': 'it-IT,it;q=0.9,en;q=0.8',
    })

    return session


class CatalogClient:
    """Catalog `package_search` consumer."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or create_session(config.user_agent)

    def package_search(self, request: SearchRequest) -> SearchResponse:
        """Run one search.

        Args:
            request: Query text, filters, sort and row cap

        Returns:
            Parsed response

        Raises:
            CatalogError: On transport errors, non-2xx status, invalid JSON or
                an unsuccessful CKAN envelope
        """
        try:
            response = self.session.get(
                self.config.search_url,
                params=request.to_params(),
                timeout=self.config.search_timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            raise CatalogError(f"search request failed: {e}") from e
        except ValueError as e:
            raise CatalogError(f"search returned invalid JSON: {e}") from e

        if not isinstance(payload, dict) or not payload.get('success', False):
            raise CatalogError("search response reports failure")

        result = payload.get('result') or {}
        raw_results = result.get('results') or []
        datasets = [CatalogDataset.from_ckan(d) for d in raw_results if isinstance(d, dict)]

        try:
            count = int(result.get('count') or 0)
        except (TypeError, ValueError):
            count = 0

        return SearchResponse(success=True, count=count, results=datasets)
