"""Dubawa fact-check adapter.

Annotation-only source. It creates and updates fact-check rows and may link
them to a candidate, but never writes candidate or manifesto data.

Feed format (JSON): ``{"fact_checks": [{"headline", "claim", "rating",
"source_url", "published_at", "trust_score", "subjects": {"candidate_name",
"party_code"}}]}``
"""
import json
import logging
from typing import List, Sequence

from civiclens.repositories import FactCheckRepository, UpsertResult
from civiclens.services.sync.adapters.base_adapter import BaseSourceAdapter, RawFactCheck
from civiclens.services.sync.errors import TransportError
from civiclens.services.sync.precedence import Source
from civiclens.services.sync.utils.validators import (
    parse_datetime, validate_fact_check_data, validate_fact_check_record
)

logger = logging.getLogger(__name__)


class DubawaAdapter(BaseSourceAdapter):
    """Adapter for Dubawa fact-check feeds."""

    source = Source.DUBAWA_FACTCHECK

    def __init__(
        self,
        db,
        fetcher,
        urls: Sequence[str] = (),
        trust_score: float = 0.8,
        trust_threshold: float = 0.5,
        **kwargs
    ):
        """
        Args:
            urls: Fact-check feed URLs
            trust_score: Score given to records that carry none
            trust_threshold: Records scoring below this are not stored
        """
        super().__init__(db, fetcher, **kwargs)
        self.urls = list(urls)
        self.trust_score = trust_score
        self.trust_threshold = trust_threshold
        self.fact_checks = FactCheckRepository(db)

    def sync_steps(self):
        return [('fact_checks', self.sync_fact_checks)]

    def is_rate_limited(self, error: BaseException) -> bool:
        # The feed's CDN answers bursts with 403 as well as 429
        if isinstance(error, TransportError) and error.status_code in (403, 429):
            return True
        return super().is_rate_limited(error)

    async def fetch_fact_checks(self) -> List[RawFactCheck]:
        fact_checks = []
        for url, payload in await self.fetch_batches(self.urls, validate_fact_check_data, 'fact_checks'):
            for record in payload['fact_checks']:
                validation = validate_fact_check_record(record)
                try:
                    published_at = parse_datetime(record.get('published_at'))
                    trust_score = float(record.get('trust_score', self.trust_score))
                except (TypeError, ValueError) as e:
                    validation.add_error(str(e))
                if not validation.is_valid:
                    self.skip_record(
                        f"{self.name}: skipped fact check {record.get('source_url')!r} from {url}: "
                        f"{'; '.join(validation.errors)}"
                    )
                    continue

                raw = self.transform_record(f"fact check {record['source_url']!r}", url, lambda: RawFactCheck(
                    headline=record['headline'],
                    claim=record['claim'],
                    rating=record['rating'],
                    source_url=record['source_url'],
                    published_at=published_at,
                    subjects=dict(record.get('subjects') or {}),
                    trust_score=trust_score,
                ))
                if raw is not None:
                    fact_checks.append(raw)

        logger.info(f"Fetched {len(fact_checks)} fact checks from Dubawa")
        return fact_checks

    async def sync_fact_checks(self):
        report = self.begin_report('fact_checks')
        for raw in await self.fetch_fact_checks():
            if raw.trust_score < self.trust_threshold:
                logger.info(f"Skipping {raw.source_url}: trust {raw.trust_score} below {self.trust_threshold}")
                report.skipped += 1
                continue
            self.apply_record(report, f"fact check {raw.source_url}", lambda raw=raw: self._store(raw))
        return self.finish_report(report)

    def _store(self, raw: RawFactCheck) -> UpsertResult:
        candidate = self.resolver.resolve_by_name_and_party(
            raw.subjects.get('candidate_name'),
            raw.subjects.get('party_code')
        )
        return self.fact_checks.upsert(raw.source_url, {
            'headline': raw.headline,
            'claim': raw.claim,
            'verdict': raw.rating,
            'candidate_id': candidate.id if candidate else None,
            'source': self.name,
            'trust_score': raw.trust_score,
            'subjects': json.dumps(raw.subjects, sort_keys=True),
            'explanation': f"Fact-check by Dubawa: {raw.headline}",
            'published_at': raw.published_at,
        })
