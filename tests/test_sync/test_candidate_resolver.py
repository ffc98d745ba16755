"""Integration tests for CandidateResolver.

Test Strategy:
1. Official records create verified candidates carrying their external id
2. Other sources create unverified placeholders and never edit existing rows
3. Official records upgrade placeholders in place
4. Missing constituency or election date acts as a wildcard on either side;
   election cycles with dates stay separate candidates
5. Nameless and annotation lookups are read-only
6. Possible duplicates are reported, not merged
"""
import pytest
from sqlalchemy.orm import Session

from civiclens.models import Candidate
from civiclens.repositories import CandidateRepository, UpsertResult
from civiclens.services.sync.adapters import RawCandidate
from civiclens.services.sync.matchers.candidate_resolver import CandidateResolver
from civiclens.services.sync.precedence import Source


@pytest.fixture
def resolver(db_session: Session) -> CandidateResolver:
    return CandidateResolver(CandidateRepository(db_session))


def upsert(resolver, db_session, source, **fields):
    candidate, result = resolver.upsert(RawCandidate(**fields), source)
    db_session.commit()
    return candidate, result


class TestCandidateResolverUpsert:
    """Test suite for precedence-aware upserts."""

    def test_official_creates_verified_candidate(self, resolver, db_session):
        """Should create a verified candidate linked to its official id."""
        candidate, result = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Bola Ahmed Tinubu', party='All Progressives Congress',
            office='President', external_id='INEC_001'
        )

        assert result == UpsertResult.CREATED
        assert candidate.pending_verification is False
        assert candidate.party_code == 'APC'
        assert candidate.normalized_name == 'BOLA AHMED TINUBU'
        assert candidate.external_ids == {'INEC_OFFICIAL': 'INEC_001'}
        assert candidate.bio_source == 'INEC_OFFICIAL'

    def test_other_source_creates_placeholder(self, resolver, db_session):
        """Should create an unverified placeholder for an unknown candidate."""
        candidate, result = upsert(
            resolver, db_session, Source.MANIFESTO_NG,
            full_name='Peter Obi', party='LP', office='President'
        )

        assert result == UpsertResult.CREATED
        assert candidate.pending_verification is True
        assert candidate.bio_source == 'MANIFESTO_NG'

    def test_official_upgrades_placeholder(self, resolver, db_session):
        """Should verify a placeholder in place and fill in official fields."""
        placeholder, _ = upsert(
            resolver, db_session, Source.MANIFESTO_NG,
            full_name='Peter Obi', party='LP', office='President'
        )

        candidate, result = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Peter  Obi', party='Labour Party', office='President',
            state='Anambra', external_id='INEC_002'
        )

        assert result == UpsertResult.UPDATED
        assert candidate.id == placeholder.id
        assert candidate.pending_verification is False
        assert candidate.state == 'Anambra'
        assert candidate.bio_source == 'INEC_OFFICIAL'
        assert db_session.query(Candidate).count() == 1

    def test_official_overwrites_conflicting_fields(self, resolver, db_session):
        """Should let the official feed win on any field it supplies."""
        upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Atiku Abubakar', party='PDP', office='President',
            state='Adamawa', external_id='INEC_003'
        )

        candidate, result = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Atiku Abubakar', party='PDP', office='President',
            state='Adamawa State', external_id='INEC_003'
        )

        assert result == UpsertResult.UPDATED
        assert candidate.state == 'Adamawa State'

    def test_official_ignores_missing_fields(self, resolver, db_session):
        """Should not blank out a column the feed omitted."""
        upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Atiku Abubakar', party='PDP', office='President',
            state='Adamawa', external_id='INEC_003'
        )

        candidate, result = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Atiku Abubakar', party='PDP', office='President', external_id='INEC_003'
        )

        assert result == UpsertResult.UNCHANGED
        assert candidate.state == 'Adamawa'

    def test_repeated_official_record_is_unchanged(self, resolver, db_session):
        """Should be idempotent for identical official records."""
        fields = dict(full_name='Peter Obi', party='LP', office='President', external_id='INEC_002')
        upsert(resolver, db_session, Source.INEC_OFFICIAL, **fields)

        _, result = upsert(resolver, db_session, Source.INEC_OFFICIAL, **fields)

        assert result == UpsertResult.UNCHANGED

    def test_other_source_never_edits_existing_candidate(self, resolver, db_session):
        """Should leave an official candidate untouched."""
        official, _ = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Peter Obi', party='LP', office='President',
            state='Anambra', external_id='INEC_002'
        )

        candidate, result = upsert(
            resolver, db_session, Source.PARTY_WEBSITES,
            full_name='Peter Obi', party='LP', office='President',
            state='Lagos', bio='Former governor'
        )

        assert result == UpsertResult.UNCHANGED
        assert candidate.id == official.id
        assert candidate.state == 'Anambra'
        assert candidate.bio is None
        assert candidate.bio_source == 'INEC_OFFICIAL'

    def test_other_source_attaches_its_external_id(self, resolver, db_session):
        """Should record a lower-precedence source's own id on a match."""
        upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Peter Obi', party='LP', office='President', external_id='INEC_002'
        )

        candidate, result = upsert(
            resolver, db_session, Source.MANIFESTO_NG,
            full_name='Peter Obi', party='LP', office='President', external_id='mng-obi'
        )

        assert result == UpsertResult.UPDATED
        assert candidate.external_ids == {'INEC_OFFICIAL': 'INEC_002', 'MANIFESTO_NG': 'mng-obi'}

    def test_external_id_wins_over_name(self, resolver, db_session):
        """Should follow the official id even when the name was corrected."""
        original, _ = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Bola Tinubu', party='APC', office='President', external_id='INEC_001'
        )

        candidate, result = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Bola Ahmed Tinubu', party='APC', office='President', external_id='INEC_001'
        )

        assert candidate.id == original.id
        assert result == UpsertResult.UPDATED
        assert candidate.normalized_name == 'BOLA AHMED TINUBU'


class TestCandidateResolverMatching:
    """Test suite for match-key resolution."""

    def test_missing_constituency_is_wildcard(self, resolver, db_session):
        """Should match across a missing constituency on either side."""
        official, _ = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Ada Okafor', party='APC', office='Senate', external_id='INEC_100'
        )

        match = resolver.resolve('Ada Okafor', 'APC', 'Senate', constituency='Lagos Central')

        assert match.id == official.id

    def test_different_constituencies_do_not_match(self, resolver, db_session):
        """Should keep same-name candidates in different seats apart."""
        upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Musa Bello', party='PDP', office='House of Representatives',
            constituency='Kano North', external_id='INEC_200'
        )

        candidate, result = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Musa Bello', party='PDP', office='House of Representatives',
            constituency='Kano South', external_id='INEC_201'
        )

        assert result == UpsertResult.CREATED
        assert db_session.query(Candidate).count() == 2

    def test_election_cycles_stay_separate(self, resolver, db_session):
        """Should keep a second-cycle official record apart from the first cycle's row."""
        first, _ = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Peter Obi', party='LP', office='President',
            election_date='2023-02-25', external_id='INEC_002'
        )

        second, result = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Peter Obi', party='LP', office='President',
            election_date='2027-02-20', external_id='INEC_102'
        )

        db_session.refresh(first)
        assert result == UpsertResult.CREATED
        assert second.id != first.id
        assert first.election_date.isoformat() == '2023-02-25'
        assert first.external_ids == {'INEC_OFFICIAL': 'INEC_002'}
        assert second.external_ids == {'INEC_OFFICIAL': 'INEC_102'}
        assert db_session.query(Candidate).count() == 2

    def test_missing_election_date_is_wildcard(self, resolver, db_session):
        """Should link an undated record to the dated candidate, preferring the exact cycle."""
        upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Peter Obi', party='LP', office='President',
            election_date='2023-02-25', external_id='INEC_002'
        )
        later, _ = upsert(
            resolver, db_session, Source.INEC_OFFICIAL,
            full_name='Peter Obi', party='LP', office='President',
            election_date='2027-02-20', external_id='INEC_102'
        )

        undated, result = upsert(
            resolver, db_session, Source.MANIFESTO_NG,
            full_name='Peter Obi', party='LP', office='President'
        )

        assert result == UpsertResult.UNCHANGED
        assert undated.pending_verification is False
        assert resolver.resolve('Peter Obi', 'LP', 'President', election_date=later.election_date).id == later.id

    def test_resolve_is_read_only(self, resolver, db_session):
        """Should return None without creating anything."""
        assert resolver.resolve('Nobody', 'APC', 'President') is None
        assert db_session.query(Candidate).count() == 0

    def test_resolve_by_party_and_office(self, resolver, db_session):
        """Should resolve only when one person holds the slot."""
        upsert(resolver, db_session, Source.INEC_OFFICIAL,
               full_name='Peter Obi', party='LP', office='President', external_id='INEC_002')
        upsert(resolver, db_session, Source.INEC_OFFICIAL,
               full_name='Ada Okafor', party='LP', office='Senate', constituency='Lagos Central',
               external_id='INEC_300')
        upsert(resolver, db_session, Source.INEC_OFFICIAL,
               full_name='Chidi Eze', party='LP', office='Senate', constituency='Enugu East',
               external_id='INEC_301')

        assert resolver.resolve_by_party_and_office('Labour Party', 'President').normalized_name == 'PETER OBI'
        assert resolver.resolve_by_party_and_office('LP', 'Senate') is None
        assert resolver.resolve_by_party_and_office('APC', 'President') is None

    def test_resolve_by_name_and_party_prefers_verified(self, resolver, db_session):
        """Should prefer the verified row when a placeholder shares the name."""
        upsert(resolver, db_session, Source.MANIFESTO_NG,
               full_name='Peter Obi', party='LP', office='Vice President')
        official, _ = upsert(resolver, db_session, Source.INEC_OFFICIAL,
                             full_name='Peter Obi', party='LP', office='President', external_id='INEC_002')

        assert resolver.resolve_by_name_and_party('Peter Obi', 'LP').id == official.id
        assert resolver.resolve_by_name_and_party('Peter Obi', None) is None


class TestPossibleDuplicates:
    """Test suite for the fuzzy duplicate finder."""

    def test_reports_similar_placeholder(self, resolver, db_session):
        """Should pair a name variant placeholder with the verified candidate."""
        official, _ = upsert(resolver, db_session, Source.INEC_OFFICIAL,
                             full_name='Bola Ahmed Tinubu', party='APC', office='President',
                             external_id='INEC_001')
        placeholder, _ = upsert(resolver, db_session, Source.MANIFESTO_NG,
                                full_name='Bola Ahmad Tinubu', party='APC', office='President')

        duplicates = resolver.find_possible_duplicates()

        assert len(duplicates) == 1
        assert duplicates[0]['placeholder_id'] == placeholder.id
        assert duplicates[0]['candidate_id'] == official.id
        assert duplicates[0]['score'] >= 90
        assert placeholder.pending_verification is True

    def test_ignores_other_slots(self, resolver, db_session):
        """Should only compare within the same party and office."""
        upsert(resolver, db_session, Source.INEC_OFFICIAL,
               full_name='Bola Ahmed Tinubu', party='APC', office='President', external_id='INEC_001')
        upsert(resolver, db_session, Source.MANIFESTO_NG,
               full_name='Bola Ahmad Tinubu', party='PDP', office='President')

        assert resolver.find_possible_duplicates() == []

    def test_ignores_dissimilar_names(self, resolver, db_session):
        upsert(resolver, db_session, Source.INEC_OFFICIAL,
               full_name='Bola Ahmed Tinubu', party='APC', office='President', external_id='INEC_001')
        upsert(resolver, db_session, Source.MANIFESTO_NG,
               full_name='Kashim Shettima', party='APC', office='President')

        assert resolver.find_possible_duplicates() == []
