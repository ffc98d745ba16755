"""Shared pytest fixtures for civiclens tests."""
import json
from typing import Any, Dict, Generator, List
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from civiclens.services.sync.errors import TransportError
from civiclens.services.sync.fetcher import FetchedDocument

INEC_CANDIDATES_URL = "https://inec.test/candidates.json"
INEC_TIMETABLE_URL = "https://inec.test/timetable.json"
INEC_RESULTS_URL = "https://results.inec.test"
MANIFESTO_NG_URL = "https://manifesto.test/manifestos.json"
PARTY_WEBSITE_URL = "https://apc.ng/manifestos.json"
DUBAWA_URL = "https://dubawa.test/fact-checks.json"

TINUBU_MANIFESTO = (
    "Economy:\n"
    "Renewed Hope for a diversified economy and more jobs.\n"
    "Security:\n"
    "Community policing and better equipped armed forces.\n"
)


class FakeFetcher:
    """
    In-memory SourceFetcher.

    ``responses`` maps a URL to a payload (served as JSON) or to an
    exception instance, which is raised on every fetch of that URL.
    Unknown URLs answer with a 404 TransportError.
    """

    def __init__(self, responses: Dict[str, Any] = None):
        self.responses = dict(responses or {})
        self.calls: List[str] = []
        self.closed = False

    async def fetch(self, url: str) -> FetchedDocument:
        self.calls.append(url)
        if url not in self.responses:
            raise TransportError(f"HTTP 404 from {url}", status_code=404, url=url)
        response = self.responses[url]
        if isinstance(response, BaseException):
            raise response
        return FetchedDocument(
            url=url,
            content=json.dumps(response).encode('utf-8'),
            content_type='application/json; charset=utf-8',
        )

    def parse(self, document: FetchedDocument) -> Any:
        return json.loads(document.text)

    async def close(self):
        self.closed = True


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    from civiclens.models.models import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(bind=engine)
    session = TestSessionLocal()

    yield session

    session.close()
    engine.dispose()


# =============================================================================
# SAMPLE FEEDS
# =============================================================================

@pytest.fixture
def inec_candidates_payload() -> Dict[str, Any]:
    """Presidential candidates as published by the official feed."""
    return {
        'candidates': [
            {
                'id': 'INEC_001',
                'full_name': 'Bola Ahmed Tinubu',
                'party': 'All Progressives Congress',
                'office': 'President',
                'state': 'Lagos',
                'election_date': '2023-02-25',
            },
            {
                'id': 'INEC_002',
                'full_name': 'Peter Obi',
                'party': 'Labour Party',
                'office': 'President',
                'state': 'Anambra',
                'election_date': '2023-02-25',
            },
            {
                'id': 'INEC_003',
                'full_name': 'Atiku Abubakar',
                'party': 'Peoples Democratic Party',
                'office': 'President',
                'state': 'Adamawa',
                'election_date': '2023-02-25',
            },
        ]
    }


@pytest.fixture
def inec_timetable_payload() -> Dict[str, Any]:
    return {
        'elections': [
            {
                'name': '2023 Presidential Election',
                'scope': 'national',
                'date_start': '2023-02-25',
                'date_end': '2023-02-25',
                'status': 'completed',
            }
        ],
        'deadlines': [
            {
                'election': '2023 Presidential Election',
                'kind': 'campaign_end',
                'due_at': '2023-02-23T00:00:00+01:00',
            }
        ],
    }


@pytest.fixture
def manifesto_ng_payload() -> Dict[str, Any]:
    return {
        'manifestos': [
            {
                'candidate_name': 'Bola Ahmed Tinubu',
                'party': 'APC',
                'office': 'President',
                'raw_text': TINUBU_MANIFESTO,
                'source_url': 'https://manifesto.test/tinubu',
                'published_at': '2022-10-21T09:00:00Z',
            }
        ]
    }


@pytest.fixture
def party_website_payload() -> Dict[str, Any]:
    return {
        'manifestos': [
            {
                'title': 'Renewed Hope Agenda',
                'party': 'APC',
                'office': 'President',
                'raw_text': TINUBU_MANIFESTO,
                'source_url': 'https://apc.ng/renewed-hope-agenda',
            }
        ]
    }


@pytest.fixture
def dubawa_payload() -> Dict[str, Any]:
    return {
        'fact_checks': [
            {
                'headline': 'Did Obi claim to have saved N75bn as governor?',
                'claim': 'Peter Obi left N75bn in Anambra savings.',
                'rating': 'Misleading',
                'source_url': 'https://dubawa.test/fc/obi-savings',
                'published_at': '2023-01-10T10:00:00Z',
                'trust_score': 0.9,
                'subjects': {'candidate_name': 'Peter Obi', 'party_code': 'LP'},
            }
        ]
    }


@pytest.fixture
def fetcher(
    inec_candidates_payload,
    inec_timetable_payload,
    manifesto_ng_payload,
    party_website_payload,
    dubawa_payload
) -> FakeFetcher:
    return FakeFetcher({
        INEC_CANDIDATES_URL: inec_candidates_payload,
        INEC_TIMETABLE_URL: inec_timetable_payload,
        MANIFESTO_NG_URL: manifesto_ng_payload,
        PARTY_WEBSITE_URL: party_website_payload,
        DUBAWA_URL: dubawa_payload,
    })


# =============================================================================
# ORCHESTRATOR
# =============================================================================

@pytest.fixture
def sync_settings():
    """Settings pointing every source at the fake fetcher's URLs."""
    from civiclens.core.config import Settings

    return Settings(
        _env_file=None,
        INEC_CANDIDATE_URLS_STR=INEC_CANDIDATES_URL,
        INEC_TIMETABLE_URLS_STR=INEC_TIMETABLE_URL,
        INEC_RESULTS_URLS_STR=INEC_RESULTS_URL,
        MANIFESTO_NG_URLS_STR=MANIFESTO_NG_URL,
        PARTY_WEBSITE_URLS_STR=PARTY_WEBSITE_URL,
        DUBAWA_FEED_URLS_STR=DUBAWA_URL,
        RETRY_MAX_RETRIES=2,
        RETRY_BASE_DELAY_MS=10,
        FACT_CHECK_TRUST_SCORE=0.8,
        FACT_CHECK_TRUST_THRESHOLD=0.5,
    )


@pytest.fixture
def embedding_index():
    index = Mock()
    index.update_all_embeddings = AsyncMock(return_value={'updated': 3, 'errors': []})
    return index


@pytest.fixture
def orchestrator(db_session, sync_settings, fetcher, embedding_index):
    """Orchestrator wired to the in-memory database and fake fetcher."""
    from civiclens.services.sync.orchestrator import build_orchestrator

    return build_orchestrator(
        db_session,
        sync_settings,
        fetcher=fetcher,
        embedding_index=embedding_index,
        sleep=no_sleep
    )
