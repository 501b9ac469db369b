"""
Mention parsing for chat text.

Two concerns live here:
- Caret-aware scanning of the editable (display-form) text to find the
  in-progress mention the user is typing after an '@'.
- Parsing of storage-form content (@type:id:name) into segments so that sent
  messages can be rendered with mentions emphasised.
"""

import re
import logging
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from models.mention import EntityType, MentionState, MentionToken, UnknownEntityTypeError

logger = logging.getLogger(__name__)

# Names end at whitespace when nothing else is known about the mention
MENTION_PATTERN = re.compile(r"@([a-z]+):([^:\s]+):(\S+)")


class Segment(NamedTuple):
    """Piece of rendered content: plain text, or a mention when `mention` is set"""
    text: str
    mention: Optional[MentionToken] = None


def detect_active_mention(text: str, caret: int) -> MentionState:
    """Find the mention being typed at the caret

    Only the last '@' before the caret counts. The mention is active while
    nothing but non-space characters sit between that '@' and the caret.

    Args:
        text: Display-form text of the input
        caret: Cursor offset into text

    Returns:
        MentionState with the search term typed since the '@'
    """
    caret = max(0, min(caret, len(text)))
    prefix = text[:caret]

    at_index = prefix.rfind("@")
    if at_index == -1:
        return MentionState.inactive()

    tail = prefix[at_index + 1:]
    if " " in tail:
        return MentionState.inactive()

    return MentionState(active=True, search_term=tail)


def find_mention_bounds(text: str, caret: int) -> Tuple[int, int]:
    """Return the [start, end) span of the mention region around the caret

    start is the last '@' before the caret; end is the next space at or
    after the caret, or the end of the text.
    """
    caret = max(0, min(caret, len(text)))
    start = text.rfind("@", 0, caret)
    if start == -1:
        raise ValueError(f"No '@' before caret position {caret}")

    end = text.find(" ", caret)
    if end == -1:
        end = len(text)

    return start, end


def _overlaps(start: int, end: int, spans: List[Tuple[int, int, MentionToken]]) -> bool:
    return any(start < span_end and end > span_start for span_start, span_end, _ in spans)


def split_segments(content: str, known: Optional[Iterable[MentionToken]] = None) -> List[Segment]:
    """Split storage-form content into text and mention segments

    Mentions listed in `known` (from message metadata) are matched by their
    exact storage form first, so names containing spaces stay whole. The rest
    of the content is scanned with MENTION_PATTERN; spans whose type is not a
    known EntityType are left as plain text.
    """
    spans: List[Tuple[int, int, MentionToken]] = []

    for token in sorted(known or [], key=lambda t: len(t.storage_form), reverse=True):
        storage = token.storage_form
        position = content.find(storage)
        while position != -1:
            end = position + len(storage)
            if not _overlaps(position, end, spans):
                spans.append((position, end, token))
            position = content.find(storage, end)

    for match in MENTION_PATTERN.finditer(content):
        if _overlaps(match.start(), match.end(), spans):
            continue
        entity_type = EntityType.parse(match.group(1))
        if entity_type is None:
            continue
        token = MentionToken(
            entity_type=entity_type,
            entity_id=match.group(2),
            display_name=match.group(3),
        )
        spans.append((match.start(), match.end(), token))

    spans.sort(key=lambda span: span[0])

    segments: List[Segment] = []
    cursor = 0
    for start, end, token in spans:
        if start > cursor:
            segments.append(Segment(content[cursor:start]))
        segments.append(Segment(content[start:end], token))
        cursor = end
    if cursor < len(content):
        segments.append(Segment(content[cursor:]))

    return segments


def parse_mentions(content: str, known: Optional[Iterable[MentionToken]] = None) -> List[MentionToken]:
    """Return the mentions embedded in storage-form content, in order"""
    return [segment.mention for segment in split_segments(content, known) if segment.mention]


def render_markdown(content: str, known: Optional[Iterable[MentionToken]] = None) -> str:
    """Render storage-form content with each mention shown as **@name**"""
    parts = []
    for segment in split_segments(content, known):
        if segment.mention:
            parts.append(f"**{segment.mention.display_form}**")
        else:
            parts.append(segment.text)
    return "".join(parts)


def to_display_text(content: str, known: Optional[Iterable[MentionToken]] = None) -> str:
    """Replace every mention's storage form with its display form"""
    return "".join(
        segment.mention.display_form if segment.mention else segment.text
        for segment in split_segments(content, known)
    )


def mentions_metadata(tokens: Iterable[MentionToken]) -> Dict[str, dict]:
    """Build the metadata.mentions map sent alongside a message"""
    return {token.key: token.to_metadata() for token in tokens}


def mentions_from_metadata(metadata: Optional[dict]) -> List[MentionToken]:
    """Decode metadata.mentions, skipping entries with unknown entity types"""
    tokens = []
    for key, data in ((metadata or {}).get("mentions") or {}).items():
        try:
            tokens.append(MentionToken.from_metadata(data))
        except (UnknownEntityTypeError, KeyError) as e:
            logger.warning(f"Skipping mention {key} in metadata: {e}")
    return tokens
