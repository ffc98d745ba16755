"""Fact-check Repository. Fact checks are keyed by their source URL."""
from typing import Dict, Optional

from civiclens.models import FactCheck
from civiclens.repositories.base import BaseRepository, UpsertResult


class FactCheckRepository(BaseRepository[FactCheck]):

    def __init__(self, db):
        super().__init__(FactCheck, db)

    def find_by_source_url(self, source_url: str) -> Optional[FactCheck]:
        return self.where_first(FactCheck.source_url == source_url)

    def upsert(self, source_url: str, fields: Dict) -> UpsertResult:
        _, result = self.create_or_update(
            self.find_by_source_url(source_url),
            dict(fields, source_url=source_url)
        )
        return result
