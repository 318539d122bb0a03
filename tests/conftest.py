"""Shared test fixtures and utilities."""

import tempfile
from pathlib import Path

import pytest

from opendati_discovery.config import Config
from opendati_discovery.models import CatalogDataset, Geography, NormalizedQuery, Resource
from opendati_discovery.ontology import Gazetteer, TopicOntology


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config():
    """Offline configuration (no LLM, no progress bar)."""
    return Config(use_llm=False, openai_api_key=None, time_budget_seconds=None)


@pytest.fixture
def ontology():
    return TopicOntology()


@pytest.fixture
def gazetteer():
    return Gazetteer()


@pytest.fixture
def milano_query(ontology):
    return NormalizedQuery(
        original='reati a Milano dal 2018 al 2022',
        geography=Geography(city='Milano', province='Milano', region='Lombardia'),
        years=(2018, 2019, 2020, 2021, 2022),
        topic=ontology.normalize('reati'),
    )


@pytest.fixture
def csv_resource():
    return Resource(url='https://example.org/reati.csv', format='CSV')


@pytest.fixture
def plain_dataset(csv_resource):
    return CatalogDataset(title='Statistiche', resources=(csv_resource,))


@pytest.fixture
def milano_csv_body():
    """Delimited payload with a Milano row and a 2023 year column."""
    return (
        "comune;anno;reati\n"
        "Milano;2023;12000\n"
        "Roma;2023;15000\n"
        "Milano;2022;11800\n"
    ).encode('utf-8')
