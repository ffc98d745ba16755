"""Source precedence policy.

One ordered list decides which source wins on a field conflict and in what
order syncs run. Lower tier means higher trust:

1. identity    - the electoral commission feed, the only authoritative source
2. content     - manifesto aggregator and party websites (co-equal)
3. annotation  - fact-check services; never write candidate or manifesto data
"""
import enum
from typing import Iterable, List


class Source(str, enum.Enum):
    INEC_OFFICIAL = "INEC_OFFICIAL"
    MANIFESTO_NG = "MANIFESTO_NG"
    PARTY_WEBSITES = "PARTY_WEBSITES"
    DUBAWA_FACTCHECK = "DUBAWA_FACTCHECK"


class SourceTier(enum.IntEnum):
    IDENTITY = 1
    CONTENT = 2
    ANNOTATION = 3


SOURCE_PRECEDENCE = (
    (Source.INEC_OFFICIAL, SourceTier.IDENTITY),
    (Source.MANIFESTO_NG, SourceTier.CONTENT),
    (Source.PARTY_WEBSITES, SourceTier.CONTENT),
    (Source.DUBAWA_FACTCHECK, SourceTier.ANNOTATION),
)

_TIERS = dict(SOURCE_PRECEDENCE)
_ORDER = {source: index for index, (source, _) in enumerate(SOURCE_PRECEDENCE)}

OFFICIAL_SOURCE = Source.INEC_OFFICIAL


def tier_of(source: Source) -> SourceTier:
    return _TIERS[Source(source)]


def is_authoritative(source: Source) -> bool:
    return tier_of(source) == SourceTier.IDENTITY


def is_annotation(source: Source) -> bool:
    return tier_of(source) == SourceTier.ANNOTATION


def ordered(sources: Iterable[Source]) -> List[Source]:
    """Deduplicate ``sources`` and sort them into precedence order."""
    return sorted({Source(source) for source in sources}, key=_ORDER.__getitem__)


def default_incremental_sources() -> List[Source]:
    """Every source except annotation-only ones, in precedence order."""
    return [source for source, tier in SOURCE_PRECEDENCE if tier != SourceTier.ANNOTATION]


def parse_source(name: str) -> Source:
    """
    Resolve a source by enum value, case-insensitively.

    Raises:
        ValueError: If ``name`` is not a known source
    """
    try:
        return Source(str(name).strip().upper())
    except ValueError:
        known = ', '.join(source.value for source in Source)
        raise ValueError(f"Unknown source '{name}'. Known sources: {known}") from None
