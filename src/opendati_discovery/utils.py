"""Utility functions and helpers."""

import logging
import re
import unicodedata
from datetime import datetime
from typing import List, Optional

# Valid range for detected years
MIN_VALID_YEAR = 1900
MAX_VALID_YEAR = 2099

YEAR_PATTERN = re.compile(r'\b((?:19|20)\d{2})\b')


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging with proper formatting.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def current_year() -> int:
    return datetime.now().year


def strip_accents(text: str) -> str:
    """Remove diacritics ('criminalità' -> 'criminalita')."""
    decomposed = unicodedata.normalize('NFD', text)
    return ''.join(c for c in decomposed if unicodedata.category(c) != 'Mn')


def fold(text: str) -> str:
    """Lowercase, accent-free form used for every substring comparison."""
    return strip_accents(text or "").lower()


def slugify(text: str) -> str:
    """Slug in the CKAN organization style ('Reggio Emilia' -> 'reggio-emilia')."""
    folded = fold(text).replace("'", " ")
    return re.sub(r'[^a-z0-9]+', '-', folded).strip('-')


def find_years(text: str) -> List[int]:
    """Extract all 4-digit years (19xx/20xx) from text, in order of appearance.

    Args:
        text: Text to search for years

    Returns:
        List of years (may contain duplicates)
    """
    if not text:
        return []
    years = [int(m) for m in YEAR_PATTERN.findall(text)]
    return [y for y in years if MIN_VALID_YEAR <= y <= MAX_VALID_YEAR]


def coerce_year(value: object) -> Optional[int]:
    """Coerce a value to a year, or None if it is not a valid 4-digit year."""
    try:
        year = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if 1000 <= year <= 9999:
        return year
    return None
