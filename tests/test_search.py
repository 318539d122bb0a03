"""Tests for the catalog client and the early-exit search executor."""

import pytest
import requests

from opendati_discovery.catalog import CatalogClient, CatalogError, SearchResponse, create_session
from opendati_discovery.models import CatalogDataset, QueryVariant, SearchRequest
from opendati_discovery.search import SearchExecutor

from fakes import FakeCatalogClient, FakeResponse, FakeSession, ckan_package


def variant(label, priority, query=None):
    return QueryVariant(label, SearchRequest(query or label), priority)


def found(*titles):
    datasets = [CatalogDataset(title=t) for t in titles]
    return SearchResponse(True, len(datasets), datasets)


EMPTY = SearchResponse(True, 0, [])


class TestCatalogClient:
    """Test package_search parsing and error mapping."""

    def make(self, config, response):
        session = FakeSession(get={config.search_url: response})
        return CatalogClient(config, session=session), session

    def test_parses_results(self, config):
        payload = {'success': True, 'result': {'count': 3, 'results': [
            ckan_package('Reati Milano', [{'url': 'https://x/a.csv', 'format': 'CSV'}]),
        ]}}
        client, session = self.make(config, FakeResponse(json_data=payload))

        response = client.package_search(SearchRequest('reati', filters=('a:1',), rows=7))

        assert response.count == 3
        assert response.results[0].title == 'Reati Milano'
        assert response.has_data
        _, url, params = session.calls[0]
        assert url == 'https://www.dati.gov.it/opendata/api/3/action/package_search'
        assert ('fq', 'a:1') in params
        assert ('rows', 7) in params

    def test_zero_count_has_no_data(self, config):
        payload = {'success': True, 'result': {'count': 0, 'results': []}}
        client, _ = self.make(config, FakeResponse(json_data=payload))
        assert not client.package_search(SearchRequest('x')).has_data

    def test_http_error(self, config):
        client, _ = self.make(config, FakeResponse(status_code=500))
        with pytest.raises(CatalogError):
            client.package_search(SearchRequest('x'))

    def test_transport_error(self, config):
        client, _ = self.make(config, requests.ConnectionError('down'))
        with pytest.raises(CatalogError):
            client.package_search(SearchRequest('x'))

    def test_invalid_json(self, config):
        client, _ = self.make(config, FakeResponse(body=b'<html>'))
        with pytest.raises(CatalogError):
            client.package_search(SearchRequest('x'))

    def test_unsuccessful_envelope(self, config):
        client, _ = self.make(config, FakeResponse(json_data={'success': False}))
        with pytest.raises(CatalogError):
            client.package_search(SearchRequest('x'))


def test_session_has_no_retries():
    session = create_session('agent/1.0')
    adapter = session.get_adapter('https://www.dati.gov.it')
    assert adapter.max_retries.total == 0
    assert session.headers['User-Agent'] == 'agent/1.0'


class TestSearchExecutor:
    """Test ordered execution with early exit."""

    def test_stops_at_first_hit(self):
        responses = {'a': EMPTY, 'b': found('B1', 'B2'), 'c': found('C')}
        client = FakeCatalogClient(lambda r: responses[r.query])

        outcome = SearchExecutor(client).execute([variant('a', 1), variant('b', 2), variant('c', 3)])

        assert [d.title for d in outcome.datasets] == ['B1', 'B2']
        assert outcome.variant.label == 'b'
        assert outcome.attempts == 2
        assert [r.query for r in client.requests] == ['a', 'b']

    def test_sorted_by_priority(self):
        client = FakeCatalogClient(lambda r: EMPTY)
        SearchExecutor(client).execute([variant('late', 4), variant('early', 1), variant('mid', 2)])
        assert [r.query for r in client.requests] == ['early', 'mid', 'late']

    def test_failures_are_skipped(self):
        def responder(request):
            if request.query == 'a':
                raise CatalogError('timeout')
            return found('B')

        outcome = SearchExecutor(FakeCatalogClient(responder)).execute(
            [variant('a', 1), variant('b', 2)])
        assert outcome.variant.label == 'b'
        assert outcome.attempts == 2

    def test_count_without_results_is_empty(self):
        client = FakeCatalogClient(lambda r: SearchResponse(True, 5, []))
        outcome = SearchExecutor(client).execute([variant('a', 1)])
        assert outcome.datasets == []
        assert outcome.variant is None

    def test_all_empty(self):
        outcome = SearchExecutor(FakeCatalogClient()).execute([variant('a', 1), variant('b', 2)])
        assert outcome.datasets == []
        assert outcome.attempts == 2

    def test_cancelled(self):
        client = FakeCatalogClient()
        outcome = SearchExecutor(client).execute([variant('a', 1)], cancelled=lambda: True)
        assert outcome.attempts == 0
        assert client.requests == []

    def test_deterministic(self):
        responses = {'a': EMPTY, 'b': EMPTY, 'c': found('C1'), 'd': found('D1')}
        variants = [variant(k, i + 1) for i, k in enumerate('abcd')]

        runs = []
        for _ in range(3):
            outcome = SearchExecutor(FakeCatalogClient(lambda r: responses[r.query])).execute(variants)
            runs.append(([d.title for d in outcome.datasets], outcome.attempts))

        assert runs == [(['C1'], 3)] * 3
