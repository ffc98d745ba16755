"""Party website adapter.

Crawls manifesto listings published by the parties themselves. Only
allowlisted party domains are fetched, and only pages that look like
manifestos (keyword in title or URL, or a PDF) are kept.

Party sites often publish a manifesto for an office rather than a named
person. Such a manifesto links to the single candidate holding that
(party, office) slot, or is stored as an orphan for review.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from civiclens.repositories import UpsertResult
from civiclens.services.sync.adapters.base_adapter import (
    BaseSourceAdapter, RawCandidate, RawManifesto
)
from civiclens.services.sync.errors import TransportError
from civiclens.services.sync.precedence import Source
from civiclens.services.sync.utils.validators import validate_manifesto_data, validate_manifesto_record

logger = logging.getLogger(__name__)

DEFAULT_ALLOWLIST = ('apc.ng', 'pdp.ng', 'labourparty.ng', 'nnpp.ng', 'apgaonline.com')

MANIFESTO_KEYWORDS = ('manifesto', 'policy', 'agenda')


def is_manifesto_page(url: str, title: Optional[str] = None) -> bool:
    """
    Examples:
        >>> is_manifesto_page("https://apc.ng/renewed-hope-agenda")
        True
        >>> is_manifesto_page("https://apc.ng/news/rally", "Campaign rally")
        False
        >>> is_manifesto_page("https://pdp.ng/files/plan.pdf")
        True
    """
    haystack = f"{title or ''} {url}".lower()
    if any(keyword in haystack for keyword in MANIFESTO_KEYWORDS):
        return True
    return urlparse(url).path.lower().endswith('.pdf')


class PartyWebsiteAdapter(BaseSourceAdapter):
    """Adapter for allowlisted party websites."""

    source = Source.PARTY_WEBSITES

    def __init__(
        self,
        db,
        fetcher,
        urls: Sequence[str] = (),
        allowlist: Sequence[str] = DEFAULT_ALLOWLIST,
        **kwargs
    ):
        super().__init__(db, fetcher, **kwargs)
        self.urls = list(urls)
        self.allowlist = [domain.lower().strip() for domain in allowlist if domain.strip()]

    def sync_steps(self):
        return [('manifestos', self.sync_manifestos)]

    def is_rate_limited(self, error: BaseException) -> bool:
        # Party sites sit behind shared hosting that answers floods with 503
        if isinstance(error, TransportError) and error.status_code in (429, 503):
            return True
        return super().is_rate_limited(error)

    def is_allowed(self, url: str) -> bool:
        host = (urlparse(url).hostname or '').lower()
        if host.startswith('www.'):
            host = host[4:]
        return any(host == domain or host.endswith('.' + domain) for domain in self.allowlist)

    async def fetch_manifestos(self) -> List[RawManifesto]:
        allowed_urls = []
        for url in self.urls:
            if self.is_allowed(url):
                allowed_urls.append(url)
            else:
                self.skip_record(f"{self.name}: skipped {url}: domain not in allowlist")

        manifestos = []
        for url, payload in await self.fetch_batches(allowed_urls, validate_manifesto_data, 'manifestos'):
            for record in payload['manifestos']:
                raw = self.transform_record('manifesto', url, lambda: self._to_raw_manifesto(record, url))
                if raw is not None:
                    manifestos.append(raw)

        logger.info(f"Fetched {len(manifestos)} manifestos from party websites")
        return manifestos

    def _to_raw_manifesto(self, record: Dict[str, Any], url: str) -> Optional[RawManifesto]:
        page_url = record.get('source_url') or url
        if not self.is_allowed(page_url):
            self.skip_record(f"{self.name}: skipped {page_url}: domain not in allowlist")
            return None
        if not is_manifesto_page(page_url, record.get('title')):
            logger.debug(f"Ignoring non-manifesto page {page_url}")
            return None

        validation = validate_manifesto_record(record, require_candidate_name=False)
        if not validation.is_valid:
            self.skip_record(f"{self.name}: skipped {page_url}: {'; '.join(validation.errors)}")
            return None
        return self.manifesto_from_record(record, url)

    async def sync_manifestos(self):
        report = self.begin_report('manifestos')
        version_label = f"Official Party Website {datetime.utcnow().year}"

        for raw in await self.fetch_manifestos():
            self.apply_record(
                report,
                f"manifesto {raw.source_url}",
                lambda raw=raw: self._store(raw, version_label)
            )
        return self.finish_report(report)

    def _store(self, raw: RawManifesto, version_label: str) -> UpsertResult:
        if raw.candidate_name:
            candidate, _ = self.resolver.upsert(
                RawCandidate(
                    full_name=raw.candidate_name,
                    party=raw.party,
                    office=raw.office,
                    constituency=raw.constituency,
                ),
                self.source
            )
        else:
            candidate = self.resolver.resolve_by_party_and_office(raw.party, raw.office)
            if candidate is None:
                logger.warning(
                    f"No single candidate for {raw.party} / {raw.office}; storing {raw.source_url} unlinked"
                )
        return self.store_manifesto(raw, candidate, version_label)
