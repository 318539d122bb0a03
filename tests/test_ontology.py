"""Tests for topic ontology, gazetteer and noise guard."""

from opendati_discovery.models import GENERIC_TOPIC, Topic
from opendati_discovery.ontology import Gazetteer, NoiseGuard, TopicOntology


class TestTopicOntology:
    """Test topic canonicalization."""

    def test_synonym_maps_to_cluster(self, ontology):
        topic = ontology.normalize('criminalità')
        assert topic.canonical == 'reati'
        assert 'delitti' in topic.synonyms

    def test_raw_synonyms_select_cluster(self, ontology):
        topic = ontology.normalize('', ['delitti'])
        assert topic.canonical == 'reati'

    def test_unmapped_passes_through(self, ontology):
        topic = ontology.normalize('Biblioteche')
        assert topic.canonical == 'biblioteche'
        assert topic.terms == ['biblioteche']
        assert topic.synonyms == ()
        assert not topic.is_generic

    def test_empty_is_generic(self, ontology):
        assert ontology.normalize(None).canonical == GENERIC_TOPIC

    def test_match_text(self, ontology):
        assert ontology.match_text('Quanti incidenti a Roma?').canonical == 'incidenti stradali'
        assert ontology.match_text('Meteo a Roma') is None

    def test_national_publishers(self, ontology):
        assert "Ministero dell'Interno" in ontology.national_publishers(ontology.normalize('reati'))
        assert ontology.national_publishers(Topic('biblioteche')) == ('ISTAT',)

    def test_from_dict(self):
        ontology = TopicOntology.from_dict({
            'biblioteche': {'synonyms': ['prestiti'], 'national_publishers': ['MiC']},
            'musei': ['visitatori'],
        })
        topic = ontology.normalize('prestiti')
        assert topic.canonical == 'biblioteche'
        assert topic.synonyms == ('biblioteche', 'prestiti')
        assert ontology.national_publishers(topic) == ('MiC',)
        assert ontology.get('musei').national_publishers == ('ISTAT',)


class TestGazetteer:
    """Test city detection and authoritative hosts."""

    def test_word_boundary_match(self, gazetteer):
        assert gazetteer.find_city('reati a Milano negli ultimi anni').city == 'Milano'
        assert gazetteer.find_city('milanofiori') is None

    def test_longest_name_first(self, gazetteer):
        assert gazetteer.find_city('dati di Reggio Emilia').city == 'Reggio Emilia'

    def test_lookup_case_insensitive(self, gazetteer):
        place = gazetteer.lookup('TORINO')
        assert place.region == 'Piemonte'
        assert gazetteer.lookup('Atlantide') is None

    def test_authoritative_hosts(self, gazetteer):
        hosts = gazetteer.authoritative_hosts('Milano')
        assert 'dati.comune.milano.it' in hosts
        assert 'comune.milano.' in hosts

    def test_authoritative_hosts_unknown_place(self, gazetteer):
        assert gazetteer.authoritative_hosts('San Mauro') == ['comune.sanmauro.']

    def test_from_dict(self):
        gazetteer = Gazetteer.from_dict({'Pinerolo': {'province': 'Torino', 'hosts': ['x.it']}})
        place = gazetteer.find_city('Pinerolo')
        assert place.province == 'Torino'
        assert place.hosts == ('x.it',)


class TestNoiseGuard:
    """Test the election-dataset guard."""

    def test_applies_to_ordinary_topics(self):
        assert NoiseGuard().applies_to(Topic('reati', ('reati',)))

    def test_exempt_for_electoral_topics(self):
        assert not NoiseGuard().applies_to(Topic('elezioni', ('elezioni', 'voti')))

    def test_disabled(self):
        assert not NoiseGuard(enabled=False).applies_to(Topic('reati'))

    def test_detects_noise_in_text_and_keys(self):
        guard = NoiseGuard()
        assert guard.is_noise('Elezioni comunali 2021')
        assert guard.is_noise('Risultati', keys=['Sezione', 'Voti validi'])
        assert not guard.is_noise('Reati denunciati', keys=['comune', 'anno'])
