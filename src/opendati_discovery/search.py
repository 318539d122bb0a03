"""Sequential execution of search variants with early exit."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .catalog import CatalogClient, CatalogError
from .models import CatalogDataset, QueryVariant

logger = logging.getLogger(__name__)


@dataclass
class SearchOutcome:
    datasets: List[CatalogDataset] = field(default_factory=list)
    variant: Optional[QueryVariant] = None
    attempts: int = 0


class SearchExecutor:
    """Runs variants in priority order and stops at the first non-empty result."""

    def __init__(self, client: CatalogClient):
        self.client = client

    def execute(self, variants: Sequence[QueryVariant], cancelled=None) -> SearchOutcome:
        """Execute variants until one returns data.

        A variant failing at transport or status level is skipped, never retried.
        An empty outcome is a normal result, not an error.

        Args:
            variants: Variants (re-sorted by priority, declaration order on ties)
            cancelled: Optional zero-argument callable; a true result stops the loop

        Returns:
            SearchOutcome with the datasets of the winning variant (or none)
        """
        outcome = SearchOutcome()

        for variant in sorted(variants, key=lambda v: v.priority):
            if cancelled is not None and cancelled():
                logger.info("Search cancelled")
                break

            outcome.attempts += 1
            logger.info(f"search:try [{variant.priority}] {variant.label}")

            try:
                response = self.client.package_search(variant.request)
            except CatalogError as e:
                logger.warning(f"search:skip {variant.label}: {e}")
                continue

            logger.info(f"search:count {variant.label}: count={response.count} "
                        f"results={len(response.results)}")

            if response.has_data:
                outcome.datasets = response.results
                outcome.variant = variant
                return outcome

        logger.info(f"search:noResults after {outcome.attempts} variants")
        return outcome
