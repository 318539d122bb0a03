"""Entity extraction: question -> (geography, years, topic).

Remote extraction uses the OpenAI Chat Completions API with a JSON-object
response; local extraction uses a gazetteer, year regexes and the topic
ontology. Remote fields win, empty remote fields are filled locally.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from openai import OpenAI

from .models import Geography, NormalizedQuery
from .ontology import Gazetteer, TopicOntology
from .utils import coerce_year, current_year, find_years, fold

logger = logging.getLogger(__name__)

LAST_N_YEARS_PATTERN = re.compile(r'\bultim[oie]?\s+(\d+|[a-z]+)\s+anni\b')
LAST_YEAR_PATTERN = re.compile(r"\b(?:ultimo anno|anno scorso|l'anno passato)\b")
YEAR_SPAN_PATTERN = re.compile(r'\b(?:dal|tra il|fra il)\s+((?:19|20)\d{2})\s+(?:al|e il|ed il)\s+((?:19|20)\d{2})\b')

NUMBER_WORDS = {
    'due': 2, 'tre': 3, 'quattro': 4, 'cinque': 5, 'sei': 6,
    'sette': 7, 'otto': 8, 'nove': 9, 'dieci': 10, 'quindici': 15, 'venti': 20,
}

MAX_SPAN_YEARS = 50

SYSTEM_PROMPT = "Sei un estrattore di entità per ricerche open-data. Rispondi solo con JSON."


def build_extraction_prompt(question: str, this_year: int) -> str:
    """Prompt demanding the fixed JSON schema of a normalized query."""
    return f"""Estrai dal testo le seguenti informazioni come JSON valido (senza commenti):
{{
  "geo": {{ "city": "", "province": "", "region": "", "nation": "" }},
  "years": [],
  "topic": {{ "canonical": "", "synonyms": [] }},
  "notes": []
}}

Regole:
- "topic.canonical" deve essere una parola italiana semplice (es. "reati", "incidenti stradali", "popolazione").
- "topic.synonyms": includi varianti utili per la ricerca nel catalogo (es. "delitti", "criminalità", "crimini").
- Se il testo dice "ultimi N anni", restituisci gli anni espliciti fino al {this_year} compreso.
- Se non sai provincia o regione, lascia stringa vuota.
- Niente testo extra fuori dal JSON.

Testo:
"{question}\""""


def expand_last_n_years(n: int, end_year: Optional[int] = None) -> List[int]:
    """Years covered by 'last N years': [end_year - N + 1 .. end_year]."""
    end_year = end_year or current_year()
    n = max(1, min(n, MAX_SPAN_YEARS))
    return list(range(end_year - n + 1, end_year + 1))


def extract_years(question: str, this_year: Optional[int] = None) -> List[int]:
    """Years mentioned in a question.

    Explicit 'dal X al Y' spans are expanded; otherwise explicit 4-digit years
    win over a relative 'ultimi N anni'.

    Args:
        question: Free-text question
        this_year: Reference year for relative expressions

    Returns:
        Sorted, deduplicated years (possibly empty)
    """
    text = fold(question)
    this_year = this_year or current_year()

    span = YEAR_SPAN_PATTERN.search(text)
    if span:
        start, end = sorted((int(span.group(1)), int(span.group(2))))
        if end - start < MAX_SPAN_YEARS:
            return list(range(start, end + 1))

    explicit = find_years(text)
    if explicit:
        return sorted(set(explicit))

    match = LAST_N_YEARS_PATTERN.search(text)
    if match:
        raw = match.group(1)
        n = int(raw) if raw.isdigit() else NUMBER_WORDS.get(raw)
        if n:
            return expand_last_n_years(n, this_year)

    if LAST_YEAR_PATTERN.search(text):
        return [this_year - 1]

    return []


def local_heuristics(question: str, ontology: TopicOntology, gazetteer: Gazetteer,
                     this_year: Optional[int] = None) -> Dict[str, Any]:
    """Regex/gazetteer extraction used when the remote strategy fails or is partial.

    Returns:
        Dict with 'geo', 'years' and 'topic' keys in the remote schema
    """
    geo: Dict[str, str] = {}
    place = gazetteer.find_city(question)
    if place:
        geo = {'city': place.city, 'province': place.province, 'region': place.region}

    cluster = ontology.match_text(question)
    topic = ({'canonical': cluster.canonical, 'synonyms': list(cluster.synonyms)}
             if cluster else {'canonical': '', 'synonyms': []})

    return {
        'geo': geo,
        'years': extract_years(question, this_year),
        'topic': topic,
    }


class LLMEntityExtractor:
    """Extract entities using OpenAI API with structured outputs."""

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini",
                 timeout: float = 20.0, client: Optional[Any] = None):
        self.model = model
        self.timeout = timeout
        self.client = client
        if self.client is None and api_key:
            self.client = OpenAI(api_key=api_key, timeout=timeout)
        self.enabled = self.client is not None

    def extract(self, question: str, this_year: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Call the model and return a validated payload, or None on any failure."""
        if not self.enabled:
            return None

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_extraction_prompt(question, this_year or current_year())},
                ],
                response_format={"type": "json_object"},
                temperature=0.1,
                max_tokens=600,
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            logger.warning(f"LLM extraction call failed: {e}")
            return None

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"LLM extraction returned invalid JSON: {e}")
            return None

        return self.validate(payload)

    @staticmethod
    def validate(payload: Any) -> Optional[Dict[str, Any]]:
        """Coerce an untrusted payload into the extraction schema.

        Unknown keys are dropped, strings trimmed, years coerced to valid
        4-digit integers. Returns None when the payload is not an object.
        """
        if not isinstance(payload, dict):
            return None

        def text(value: Any) -> str:
            return value.strip() if isinstance(value, str) else ""

        geo_raw = payload.get('geo') if isinstance(payload.get('geo'), dict) else {}
        geo = {key: text(geo_raw.get(key)) for key in ('city', 'province', 'region', 'nation')}

        years_raw = payload.get('years') if isinstance(payload.get('years'), list) else []
        years = [y for y in (coerce_year(v) for v in years_raw) if y is not None]

        topic_raw = payload.get('topic') if isinstance(payload.get('topic'), dict) else {}
        synonyms_raw = topic_raw.get('synonyms') if isinstance(topic_raw.get('synonyms'), list) else []
        topic = {
            'canonical': text(topic_raw.get('canonical')),
            'synonyms': [s for s in (text(v) for v in synonyms_raw) if s],
        }

        notes_raw = payload.get('notes') if isinstance(payload.get('notes'), list) else []
        notes = [n for n in (text(v) for v in notes_raw) if n]

        return {'geo': geo, 'years': years, 'topic': topic, 'notes': notes}


class EntityExtractor:
    """Remote-first entity extraction with local fallback and field-wise merge."""

    def __init__(self, ontology: TopicOntology, gazetteer: Gazetteer,
                 llm: Optional[LLMEntityExtractor] = None,
                 clock: Callable[[], int] = current_year):
        self.ontology = ontology
        self.gazetteer = gazetteer
        self.llm = llm
        self.clock = clock

    def extract(self, question: str) -> NormalizedQuery:
        """Normalize a question. Never raises for extraction failures."""
        this_year = self.clock()
        remote = self.llm.extract(question, this_year) if self.llm else None
        local = local_heuristics(question, self.ontology, self.gazetteer, this_year)

        notes = list(remote['notes']) if remote else []
        notes.append("extraction: llm+local" if remote else "extraction: local")
        if remote is None:
            remote = {'geo': {}, 'years': [], 'topic': {'canonical': '', 'synonyms': []}}

        geography = self._merge_geography(remote['geo'], local['geo'])
        years = remote['years'] or local['years']

        remote_topic = remote['topic']
        if remote_topic['canonical'] or remote_topic['synonyms']:
            topic = self.ontology.normalize(remote_topic['canonical'], remote_topic['synonyms'])
        else:
            topic = self.ontology.normalize(local['topic']['canonical'], local['topic']['synonyms'])

        normalized = NormalizedQuery(
            original=question,
            geography=geography,
            years=tuple(years),
            topic=topic,
            notes=tuple(notes),
        )
        logger.info(f"Normalized question: geo={geography.token or '-'} "
                    f"topic={topic.canonical} years={list(normalized.years)}")
        return normalized

    def _merge_geography(self, remote: Dict[str, str], local: Dict[str, str]) -> Geography:
        city = remote.get('city') or local.get('city') or None
        province = remote.get('province') or None
        region = remote.get('region') or None

        # Local province/region only describe the locally detected city
        if not remote.get('city') or fold(remote['city']) == fold(local.get('city') or ''):
            province = province or local.get('province') or None
            region = region or local.get('region') or None

        place = self.gazetteer.lookup(city)
        if place:
            city = place.city
            province = province or place.province or None
            region = region or place.region or None

        return Geography(
            city=city,
            province=province,
            region=region,
            nation=remote.get('nation') or 'Italia',
        )
