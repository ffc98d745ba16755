"""Source adapters, one per upstream."""
from civiclens.services.sync.adapters.base_adapter import (
    BaseSourceAdapter,
    RawCandidate,
    RawDeadline,
    RawElection,
    RawFactCheck,
    RawManifesto,
)
from civiclens.services.sync.adapters.inec_adapter import InecAdapter
from civiclens.services.sync.adapters.manifesto_ng_adapter import ManifestoNGAdapter
from civiclens.services.sync.adapters.party_website_adapter import PartyWebsiteAdapter
from civiclens.services.sync.adapters.dubawa_adapter import DubawaAdapter

__all__ = [
    "BaseSourceAdapter",
    "RawCandidate",
    "RawDeadline",
    "RawElection",
    "RawFactCheck",
    "RawManifesto",
    "InecAdapter",
    "ManifestoNGAdapter",
    "PartyWebsiteAdapter",
    "DubawaAdapter",
]
