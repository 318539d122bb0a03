"""Tests for broad fallback scoring and scanning."""

from opendati_discovery.catalog import CatalogError, SearchResponse
from opendati_discovery.config import Config
from opendati_discovery.fallback import (
    CSV_RESOURCE,
    GROUP_HIT,
    JSON_RESOURCE,
    PUBLISHER_HIT,
    TAG_HIT,
    TEXT_HIT,
    BroadFallbackScanner,
    rank_datasets,
    score_dataset_for_topic,
)
from opendati_discovery.models import CatalogDataset, Geography, Resource, Topic

from fakes import FakeCatalogClient

TERMS = ['reati', 'delitti', 'criminalità']


def dataset(title='Dataset', **kwargs):
    return CatalogDataset(title=title, **kwargs)


class TestScoreDataset:
    """Test the topic-relevance score."""

    def test_title_hit_beats_no_hit(self):
        a = dataset('Reati denunciati')
        b = dataset('Parcheggi')
        assert score_dataset_for_topic(a, TERMS) > score_dataset_for_topic(b, TERMS)

    def test_increments(self):
        full = dataset(
            'Delitti in città',
            tags=('criminalita',),
            groups=('Reati e sicurezza',),
            organization_title='ISTAT',
            resources=(Resource('https://x/a.json', 'JSON'), Resource('https://x/a.csv', 'CSV')),
        )
        expected = TEXT_HIT + TAG_HIT + GROUP_HIT + PUBLISHER_HIT + JSON_RESOURCE + CSV_RESOURCE
        assert score_dataset_for_topic(full, TERMS, ['ISTAT']) == expected

    def test_accent_insensitive(self):
        assert score_dataset_for_topic(dataset('Indice di criminalita'), TERMS) == TEXT_HIT

    def test_description_counts_as_text(self):
        assert score_dataset_for_topic(dataset('X', description='elenco dei reati'), TERMS) == TEXT_HIT

    def test_each_publisher_adds(self):
        ds = dataset(holder_name="ISTAT - Ministero dell'Interno")
        assert score_dataset_for_topic(ds, TERMS, ['ISTAT', "Ministero dell'Interno"]) == 2

    def test_topic_agnostic(self):
        ds = dataset('Raccolta differenziata 2022')
        assert score_dataset_for_topic(ds, ['raccolta differenziata']) == TEXT_HIT
        assert score_dataset_for_topic(ds, TERMS) == 0

    def test_no_evidence(self):
        assert score_dataset_for_topic(dataset('Parcheggi'), TERMS) == 0


class TestRankDatasets:
    """Test ordering and cut-off."""

    def test_sorted_and_filtered(self):
        low = dataset('Tabella', resources=(Resource('https://x/a.csv', 'CSV'),))
        high = dataset('Reati')
        zero = dataset('Parcheggi')
        ranked = rank_datasets([low, zero, high], TERMS)
        assert [ds.title for ds, _ in ranked] == ['Reati', 'Tabella']

    def test_stable_on_ties(self):
        items = [dataset(f'Reati {i}') for i in range(5)]
        ranked = rank_datasets(items, TERMS)
        assert [ds.title for ds, _ in ranked] == [f'Reati {i}' for i in range(5)]

    def test_limit(self):
        items = [dataset(f'Reati {i}') for i in range(30)]
        assert len(rank_datasets(items, TERMS, limit=12)) == 12


class TestBroadFallbackScanner:
    """Test the single wide geography query."""

    def test_geography_query(self, config, ontology):
        results = [dataset('Parcheggi'), dataset('Reati a Milano'), dataset('Delitti')]
        client = FakeCatalogClient(lambda r: SearchResponse(True, 3, results))
        scanner = BroadFallbackScanner(client, config, ontology)

        found = scanner.scan(Geography(city='Milano'), ontology.normalize('reati'))

        assert [ds.title for ds in found] == ['Reati a Milano', 'Delitti']
        request = client.requests[0]
        assert request.query == 'Milano'
        assert request.rows == 100
        assert request.filters == ()

    def test_no_geography_no_scan(self, config, ontology):
        client = FakeCatalogClient()
        scanner = BroadFallbackScanner(client, config, ontology)
        assert scanner.scan(Geography(), ontology.normalize('reati')) == []
        assert client.requests == []

    def test_topic_only_scan_when_enabled(self, ontology):
        config = Config(use_llm=False, topic_only_fallback=True)
        client = FakeCatalogClient(lambda r: SearchResponse(True, 1, [dataset('Reati')]))
        scanner = BroadFallbackScanner(client, config, ontology)

        found = scanner.scan(Geography(), ontology.normalize('reati'))

        assert [ds.title for ds in found] == ['Reati']
        assert 'reati' in client.requests[0].query

    def test_generic_topic_without_geography(self, ontology):
        config = Config(use_llm=False, topic_only_fallback=True)
        scanner = BroadFallbackScanner(FakeCatalogClient(), config, ontology)
        assert scanner.build_request(Geography(), Topic()) is None

    def test_failure_is_empty(self, config, ontology):
        def responder(request):
            raise CatalogError('down')

        scanner = BroadFallbackScanner(FakeCatalogClient(responder), config, ontology)
        assert scanner.scan(Geography(city='Milano'), ontology.normalize('reati')) == []

    def test_cancelled(self, config, ontology):
        client = FakeCatalogClient()
        scanner = BroadFallbackScanner(client, config, ontology)
        assert scanner.scan(Geography(city='Milano'), Topic(), cancelled=lambda: True) == []
        assert client.requests == []
