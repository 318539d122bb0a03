"""Resource selection and bounded sampling of JSON and delimited-text payloads."""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import requests

from .catalog import create_session
from .config import Config
from .models import CatalogDataset, Resource, Sample

logger = logging.getLogger(__name__)

FORMAT_SCORES = {'json': 3, 'csv': 2}

DELIMITERS = (',', ';', '\t')

# Accessor paths tried in order on a top-level JSON object
JSON_ARRAY_PATHS: Tuple[Tuple[str, ...], ...] = (
    ('data',),
    ('records',),
    ('result',),
    ('result', 'records'),
)

CHUNK_SIZE = 64 * 1024


class ResourceFetchError(Exception):
    """A resource could not be fetched (transport error or non-2xx status)."""


class SamplingCancelled(Exception):
    """The caller cancelled the invocation while a body was being read."""


def resource_score(resource: Resource) -> int:
    if not resource.url:
        return 0
    return FORMAT_SCORES.get(resource.declared_kind, 0)


def rank_resources(dataset: CatalogDataset) -> List[Resource]:
    """Resources worth sampling, JSON before CSV, declaration order on ties.

    Any other format is excluded.
    """
    scored = [(r, resource_score(r)) for r in dataset.resources]
    scored = [pair for pair in scored if pair[1] > 0]
    scored.sort(key=lambda pair: -pair[1])
    return [r for r, _ in scored]


def detect_delimiter(header: str) -> str:
    """Pick the most frequent of comma, semicolon and tab in the header line.

    Counting is on raw characters, not quote-aware: a comma inside a quoted
    header cell still counts. Ties resolve in the order comma, semicolon, tab.
    """
    counts = [(header.count(d), -i, d) for i, d in enumerate(DELIMITERS)]
    return max(counts)[2]


def _clean_token(token: str) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] == '"':
        token = token[1:-1].strip()
    return token


def parse_delimited(text: str, max_lines: int = 101, max_rows: int = 20) -> Sample:
    """Parse delimited text into row records.

    Args:
        text: Decoded payload
        max_lines: Non-blank lines considered, header included
        max_rows: Data rows returned

    Returns:
        Sample with note 'csv_sample', or no rows with 'csv_too_short'
    """
    lines = [line for line in text.splitlines() if line.strip()][:max_lines]
    if len(lines) < 2:
        return Sample(rows=[], note='csv_too_short')

    delimiter = detect_delimiter(lines[0])
    headers = [_clean_token(h) for h in lines[0].split(delimiter)]
    keys = [h or f"col_{i + 1}" for i, h in enumerate(headers)]

    rows = []
    for line in lines[1:max_rows + 1]:
        values = line.split(delimiter)
        rows.append({
            key: _clean_token(values[i]) if i < len(values) else ''
            for i, key in enumerate(keys)
        })

    return Sample(rows=rows, note='csv_sample')


@dataclass(frozen=True)
class JsonShape:
    """How a JSON document exposed its records.

    kind is one of 'array' (top-level list), 'wrapped' (list under `path`),
    'no_array' (valid JSON, no list found) or 'invalid' (parse error).
    """

    kind: str
    items: Tuple[Any, ...] = ()
    path: Tuple[str, ...] = ()


def _follow(document: Any, path: Sequence[str]) -> Any:
    node = document
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def json_shape(text: str) -> JsonShape:
    try:
        document = json.loads(text)
    except (ValueError, RecursionError):
        # RecursionError: nesting deeper than the parser stack
        return JsonShape(kind='invalid')

    if isinstance(document, list):
        return JsonShape(kind='array', items=tuple(document))

    if isinstance(document, dict):
        for path in JSON_ARRAY_PATHS:
            node = _follow(document, path)
            if isinstance(node, list):
                return JsonShape(kind='wrapped', items=tuple(node), path=path)

    return JsonShape(kind='no_array')


def parse_json(text: str, max_rows: int = 20) -> Sample:
    """Parse a JSON document into at most `max_rows` records.

    Scalars inside the array are wrapped as {'value': item}.
    """
    shape = json_shape(text)
    if shape.kind == 'invalid':
        return Sample(rows=[], note='json_parse_error')
    if shape.kind == 'no_array':
        return Sample(rows=[], note='json_no_array')

    rows = [item if isinstance(item, dict) else {'value': item}
            for item in shape.items[:max_rows]]
    note = 'json_array_sample' if shape.kind == 'array' else 'json_obj_sample'
    return Sample(rows=rows, note=note)


def decode_body(body: bytes) -> str:
    """Decode a (possibly truncated) payload.

    Tries UTF-8 first, dropping a multi-byte character cut by truncation, then
    falls back to cp1252 and latin-1.
    """
    try:
        text = body.decode('utf-8')
    except UnicodeDecodeError as e:
        text = None
        if e.start >= len(body) - 3:
            try:
                text = body[:e.start].decode('utf-8')
            except UnicodeDecodeError:
                text = None
        if text is None:
            try:
                text = body.decode('cp1252')
            except UnicodeDecodeError:
                text = body.decode('latin-1')
    return text.lstrip('\ufeff')


class ResourceSampler:
    """Bounded probe-fetch-parse of one resource."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or create_session(config.user_agent,
                                                 pool_size=max(10, config.sampling_workers))

    def probe_length(self, url: str) -> Optional[int]:
        """Declared Content-Length from a HEAD request, or None if unknown."""
        try:
            response = self.session.head(url, timeout=self.config.resource_timeout,
                                         allow_redirects=True)
        except requests.exceptions.RequestException as e:
            logger.debug(f"HEAD failed for {url}: {e}")
            return None

        if not response.ok:
            return None
        try:
            return int(response.headers.get('Content-Length', ''))
        except ValueError:
            return None

    def fetch(self, url: str, cancel_event: Optional[threading.Event] = None) -> bytes:
        """GET the body, reading at most `max_resource_bytes`.

        Raises:
            ResourceFetchError: Transport error or non-2xx status
            SamplingCancelled: cancel_event was set during the read
        """
        limit = self.config.max_resource_bytes
        chunks: List[bytes] = []
        size = 0

        try:
            with self.session.get(url, timeout=self.config.resource_timeout, stream=True) as response:
                if not response.ok:
                    raise ResourceFetchError(f"status {response.status_code}")
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if cancel_event is not None and cancel_event.is_set():
                        raise SamplingCancelled(url)
                    if not chunk:
                        continue
                    chunks.append(chunk)
                    size += len(chunk)
                    if size >= limit:
                        break
        except requests.exceptions.RequestException as e:
            raise ResourceFetchError(str(e)) from e

        return b''.join(chunks)[:limit]

    def sample(self, resource: Resource, cancel_event: Optional[threading.Event] = None) -> Sample:
        """Sample a resource.

        Oversized and unparseable resources yield an empty Sample whose note
        says why; transport failures raise ResourceFetchError.
        """
        kind = resource.declared_kind
        if kind is None:
            return Sample(rows=[], note='unsupported_format')

        declared = self.probe_length(resource.url)
        if declared is not None and declared > self.config.max_resource_bytes:
            logger.info(f"resource:skipLarge {resource.url} ({declared} bytes)")
            return Sample(rows=[], note='skipped_large_file')

        text = decode_body(self.fetch(resource.url, cancel_event))

        if kind == 'json':
            return parse_json(text, self.config.max_sample_rows)
        return parse_delimited(text, self.config.max_csv_lines, self.config.max_sample_rows)
