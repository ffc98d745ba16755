"""Heuristic manifesto sectioning.

Splits manifesto text into a fixed topic vocabulary by looking for short
heading lines that start with a topic keyword, e.g.::

    Economy:
    We will diversify ...

    2. Healthcare Reform
    Every ward gets a primary health centre ...

This is best-effort keyword anchoring, not semantic parsing. Text with no
recognisable heading becomes a single ``general`` section.
"""
import re
from dataclasses import asdict, dataclass
from typing import Dict, List

TOPICS = ('economy', 'education', 'health', 'security', 'infrastructure', 'governance')

TOPIC_ALIASES = {
    'economic': 'economy',
    'healthcare': 'health',
}

GENERAL_TOPIC = 'general'

MAX_SECTION_LENGTH = 2000
MAX_SUMMARY_LENGTH = 200

# A heading may carry up to this many words after the keyword ("Healthcare Reform Plan")
_MAX_HEADING_TAIL_WORDS = 3

_KEYWORDS = '|'.join(sorted(set(TOPICS) | set(TOPIC_ALIASES), key=len, reverse=True))

_HEADING_RE = re.compile(
    r'^\s*(?:#+\s*|\d+[.)]\s*|[-*]\s*)?'
    rf'(?P<keyword>{_KEYWORDS})\b'
    r'(?P<tail>[^:\n]*)'
    r'(?P<colon>:)?(?P<inline>.*)$',
    re.IGNORECASE,
)


@dataclass
class ManifestoSection:
    heading: str
    topic: str
    content: str
    summary: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _summarize(content: str) -> str:
    if len(content) <= MAX_SUMMARY_LENGTH:
        return content
    return content[:MAX_SUMMARY_LENGTH].rstrip() + '...'


def _match_heading(line: str):
    match = _HEADING_RE.match(line)
    if not match:
        return None
    tail_words = match.group('tail').split()
    if len(tail_words) > _MAX_HEADING_TAIL_WORDS:
        return None
    # Without a colon the whole line must read like a title, not a sentence
    if not match.group('colon') and (match.group('inline').strip() or line.rstrip().endswith('.')):
        return None
    keyword = match.group('keyword').lower()
    return TOPIC_ALIASES.get(keyword, keyword), match.group('inline').strip()


def _make_section(topic: str, content: str) -> ManifestoSection:
    content = content.strip()[:MAX_SECTION_LENGTH]
    heading = 'General Manifesto' if topic == GENERAL_TOPIC else f"{topic.capitalize()} Policy"
    return ManifestoSection(heading=heading, topic=topic, content=content, summary=_summarize(content))


def parse_manifesto_sections(raw_text: str) -> List[ManifestoSection]:
    """
    Split manifesto text into topic sections.

    Repeated headings for the same topic are merged in document order.
    Content is capped at MAX_SECTION_LENGTH characters and the summary at
    MAX_SUMMARY_LENGTH.

    Examples:
        >>> [s.topic for s in parse_manifesto_sections("Economy:\\nJobs.\\nHealthcare\\nClinics.")]
        ['economy', 'health']
        >>> [s.topic for s in parse_manifesto_sections("A better Nigeria for all.")]
        ['general']
    """
    raw_text = raw_text or ''
    collected: Dict[str, List[str]] = {}
    current = None

    for line in raw_text.splitlines():
        heading = _match_heading(line)
        if heading:
            current, inline = heading
            bucket = collected.setdefault(current, [])
            if inline:
                bucket.append(inline)
        elif current is not None:
            collected[current].append(line)

    sections = [
        _make_section(topic, '\n'.join(lines))
        for topic, lines in collected.items()
        if '\n'.join(lines).strip()
    ]
    if not sections:
        sections.append(_make_section(GENERAL_TOPIC, raw_text))
    return sections
