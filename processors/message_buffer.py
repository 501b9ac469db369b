"""
Dual-buffer text model for the chat input.

The editable field shows the display form (@Printer issue) while the message
sent and persisted uses the storage form (@ticket:T1:Printer issue). Only the
display text and the list of inserted mentions are stored; the storage text
is derived from them, so both forms agree outside mention spans.
"""

from typing import List, NamedTuple, Optional, Union
import logging

from models.mention import MentionCandidate, MentionState, MentionToken
from processors.mention_parser import detect_active_mention, find_mention_bounds

logger = logging.getLogger(__name__)


class InsertedMention(NamedTuple):
    start: int  # offset of the '@' in the display text
    token: MentionToken

    @property
    def end(self) -> int:
        return self.start + len(self.token.display_form)


class MessageBuffer:
    """Keeps the storage and display forms of one chat input in sync"""

    def __init__(self):
        self._display = ""
        self._mentions: List[InsertedMention] = []

    @property
    def display_text(self) -> str:
        return self._display

    @property
    def storage_text(self) -> str:
        parts = []
        cursor = 0
        for mention in self._mentions:
            parts.append(self._display[cursor:mention.start])
            parts.append(mention.token.storage_form)
            cursor = mention.end
        parts.append(self._display[cursor:])
        return "".join(parts)

    @property
    def mentions(self) -> List[MentionToken]:
        return [mention.token for mention in self._mentions]

    @property
    def is_blank(self) -> bool:
        return not self._display.strip()

    def clear(self):
        self._display = ""
        self._mentions = []

    def replace_text(self, new_display: str, caret: Optional[int] = None) -> int:
        """Apply a free-typing edit given the new display text

        The edited range is recovered from the common prefix and suffix of
        the old and new text, anchored at the caret when one is given. An
        edit that reaches into an inserted mention removes that mention
        entirely from both forms.

        Args:
            new_display: Full display text after the edit
            caret: Cursor offset in new_display after the edit

        Returns:
            Caret offset after the edit has been applied
        """
        old = self._display
        if new_display == old:
            return len(old) if caret is None else caret

        if caret is None:
            caret = len(new_display)
        caret = max(0, min(caret, len(new_display)))

        max_suffix = min(len(old), len(new_display), len(new_display) - caret)
        suffix = 0
        while suffix < max_suffix and old[-1 - suffix] == new_display[-1 - suffix]:
            suffix += 1

        max_prefix = min(len(old), len(new_display)) - suffix
        prefix = 0
        while prefix < max_prefix and old[prefix] == new_display[prefix]:
            prefix += 1

        inserted = new_display[prefix:len(new_display) - suffix]
        return self._apply_edit(prefix, len(old) - suffix, inserted)

    def active_mention(self, caret: int) -> MentionState:
        """Tokenizer result for the caret, ignoring already-inserted mentions"""
        state = detect_active_mention(self._display, caret)
        if not state.active:
            return state

        at_index = self._display.rfind("@", 0, max(0, min(caret, len(self._display))))
        for mention in self._mentions:
            if mention.start <= at_index < mention.end:
                return MentionState.inactive()

        return state

    def insert_mention(self, caret: int, candidate: Union[MentionCandidate, MentionToken]) -> int:
        """Replace the active mention region with a selected entity

        Returns:
            Caret offset just after the inserted mention
        """
        if not self.active_mention(caret).active:
            raise ValueError(f"No active mention at caret position {caret}")

        token = candidate.to_token() if isinstance(candidate, MentionCandidate) else candidate
        start, end = find_mention_bounds(self._display, caret)
        for mention in self._mentions:
            if start < mention.start < end:
                # region stops at the next inserted mention
                end = mention.start

        new_caret = self._apply_edit(start, end, token.display_form)
        self._mentions.append(InsertedMention(new_caret - len(token.display_form), token))
        self._mentions.sort(key=lambda mention: mention.start)

        logger.debug(f"Inserted mention {token.key} at offset {new_caret - len(token.display_form)}")
        return new_caret

    def _touches(self, mention: InsertedMention, start: int, end: int) -> bool:
        if start == end:
            return mention.start < start < mention.end
        return start < mention.end and end > mention.start

    def _apply_edit(self, start: int, end: int, inserted: str) -> int:
        """Replace display[start:end] with inserted, dropping broken mentions"""
        broken = set()
        expanded = True
        while expanded:
            expanded = False
            for index, mention in enumerate(self._mentions):
                if index in broken or not self._touches(mention, start, end):
                    continue
                broken.add(index)
                if mention.start < start or mention.end > end:
                    start = min(start, mention.start)
                    end = max(end, mention.end)
                    expanded = True

        if broken:
            logger.debug(f"Edit removed {len(broken)} inserted mention(s)")

        delta = len(inserted) - (end - start)
        remaining = []
        for index, mention in enumerate(self._mentions):
            if index in broken:
                continue
            if mention.start >= end:
                remaining.append(InsertedMention(mention.start + delta, mention.token))
            else:
                remaining.append(mention)

        self._display = self._display[:start] + inserted + self._display[end:]
        self._mentions = remaining
        return start + len(inserted)
