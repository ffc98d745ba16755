"""Results link Repository. Links are keyed by URL; a stored link keeps its status."""
from typing import Dict, Optional

from civiclens.models import ResultsLink
from civiclens.repositories.base import BaseRepository, UpsertResult


class ResultsLinkRepository(BaseRepository[ResultsLink]):

    def __init__(self, db):
        super().__init__(ResultsLink, db)

    def find_by_url(self, url: str) -> Optional[ResultsLink]:
        return self.where_first(ResultsLink.url == url)

    def upsert(self, url: str, fields: Dict) -> UpsertResult:
        _, result = self.create_or_update(self.find_by_url(url), dict(fields, url=url))
        return result
