"""Name and party normalization used as candidate matching keys.

Handles common variations across feeds:
- Punctuation: "Bola A. Tinubu" → "BOLA A TINUBU"
- Case: "peter obi" → "PETER OBI"
- Extra spaces: "Atiku   Abubakar " → "ATIKU ABUBAKAR"
- Party names: "Labour Party" → "LP"
"""
import re
from typing import Optional


# Full party name (upper-cased) → short code
PARTY_CODES = {
    'ALL PROGRESSIVES CONGRESS': 'APC',
    'PEOPLES DEMOCRATIC PARTY': 'PDP',
    'LABOUR PARTY': 'LP',
    'NEW NIGERIA PEOPLES PARTY': 'NNPP',
    'ALL PROGRESSIVES GRAND ALLIANCE': 'APGA',
    'YOUNG PROGRESSIVES PARTY': 'YPP',
    'SOCIAL DEMOCRATIC PARTY': 'SDP',
    'AFRICAN DEMOCRATIC CONGRESS': 'ADC',
    'ACTION ALLIANCE': 'AA',
    'ACCORD PARTY': 'ACCORD',
}

KNOWN_PARTY_CODES = frozenset(PARTY_CODES.values())

# Length of the upper-cased prefix used for parties missing from PARTY_CODES
PARTY_CODE_FALLBACK_LENGTH = 10


def normalize_full_name(name: Optional[str]) -> str:
    """
    Normalize a candidate name for use as a matching key.

    Steps:
    1. Trim surrounding whitespace
    2. Remove punctuation (keep letters, digits, whitespace)
    3. Collapse runs of whitespace
    4. Upper-case

    Args:
        name: The name to normalize

    Returns:
        Normalized name string ("" for empty input)

    Examples:
        >>> normalize_full_name("  Bola Ahmed Tinubu ")
        'BOLA AHMED TINUBU'
        >>> normalize_full_name("Peter G. Obi")
        'PETER G OBI'
        >>> normalize_full_name("Atiku   Abubakar")
        'ATIKU ABUBAKAR'
    """
    if not name:
        return ""

    name = name.strip()
    name = re.sub(r'[^\w\s]', '', name)
    name = re.sub(r'\s+', ' ', name)

    return name.upper()


def normalize_party_code(party: Optional[str]) -> str:
    """
    Map a party name to its short code.

    Known full names come from PARTY_CODES. Anything else falls back to the
    first PARTY_CODE_FALLBACK_LENGTH characters, upper-cased. The fallback is
    lossy (two long unknown names sharing a prefix collide) and is reported
    by the integrity check rather than treated as an error.

    Examples:
        >>> normalize_party_code("All Progressives Congress")
        'APC'
        >>> normalize_party_code("apc")
        'APC'
        >>> normalize_party_code("Zenith Labour Party")
        'ZENITH LAB'
    """
    if not party:
        return ""

    cleaned = ' '.join(party.split())
    upper_name = cleaned.upper()
    return PARTY_CODES.get(upper_name, cleaned[:PARTY_CODE_FALLBACK_LENGTH].upper())


def normalize_office(office: Optional[str]) -> str:
    """Trim and collapse whitespace in an office title; case is preserved."""
    if not office:
        return ""
    return ' '.join(office.split())
