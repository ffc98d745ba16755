"""Manifesto.NG adapter for the manifesto aggregator.

Content-tier source: it adds manifesto versions and may create unverified
placeholder candidates, but never edits an existing candidate.

Feed format (JSON): ``{"manifestos": [{"candidate_name", "party", "office",
"constituency", "raw_text", "source_url", "published_at"}]}``
"""
import logging
from datetime import datetime
from typing import List, Sequence

from civiclens.repositories import UpsertResult
from civiclens.services.sync.adapters.base_adapter import (
    BaseSourceAdapter, RawCandidate, RawManifesto
)
from civiclens.services.sync.precedence import Source
from civiclens.services.sync.utils.validators import validate_manifesto_data, validate_manifesto_record

logger = logging.getLogger(__name__)


class ManifestoNGAdapter(BaseSourceAdapter):
    """Adapter for Manifesto.NG manifesto collections."""

    source = Source.MANIFESTO_NG

    def __init__(self, db, fetcher, urls: Sequence[str] = (), **kwargs):
        super().__init__(db, fetcher, **kwargs)
        self.urls = list(urls)

    def sync_steps(self):
        return [('manifestos', self.sync_manifestos)]

    async def fetch_manifestos(self) -> List[RawManifesto]:
        manifestos = []
        for url, payload in await self.fetch_batches(self.urls, validate_manifesto_data, 'manifestos'):
            for record in payload['manifestos']:
                validation = validate_manifesto_record(record, require_candidate_name=True)
                if not validation.is_valid:
                    self.skip_record(
                        f"{self.name}: skipped manifesto {record.get('candidate_name')!r} from {url}: "
                        f"{'; '.join(validation.errors)}"
                    )
                    continue
                raw = self.transform_record(
                    f"manifesto {record['candidate_name']!r}", url, lambda: self.manifesto_from_record(record, url)
                )
                if raw is not None:
                    manifestos.append(raw)

        logger.info(f"Fetched {len(manifestos)} manifestos from Manifesto.NG")
        return manifestos

    async def sync_manifestos(self):
        report = self.begin_report('manifestos')
        version_label = f"Manifesto.NG {datetime.utcnow().year}"

        for raw in await self.fetch_manifestos():
            self.apply_record(
                report,
                f"manifesto for {raw.candidate_name}",
                lambda raw=raw: self._store(raw, version_label)
            )
        return self.finish_report(report)

    def _store(self, raw: RawManifesto, version_label: str) -> UpsertResult:
        candidate, _ = self.resolver.upsert(
            RawCandidate(
                full_name=raw.candidate_name,
                party=raw.party,
                office=raw.office,
                constituency=raw.constituency,
            ),
            self.source
        )
        return self.store_manifesto(raw, candidate, version_label)
