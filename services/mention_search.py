"""
Mention search: resolves the term typed after '@' into ranked entity candidates.

MentionSearchService performs a single lookup. MentionSearchController sits in
front of it for a chat window: it debounces keystrokes, cancels superseded
lookups, and only applies a result if it belongs to the latest query.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from pydantic import BaseModel, ValidationError

from config import settings
from models.mention import MentionCandidate, UnknownEntityTypeError
from services.database import DatabaseService

logger = logging.getLogger(__name__)


class MentionSearchResult(BaseModel):
    """Outcome of one lookup. `error` set means the search failed, not that nothing matched."""
    query: str
    candidates: List[MentionCandidate] = []
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class MentionSearchService:
    """Ranked multi-type entity lookup through the search_mentions RPC"""

    def __init__(self, db: DatabaseService = None, max_results: Optional[int] = None):
        self.db = db or DatabaseService()
        self.max_results = settings.MENTION_MAX_RESULTS if max_results is None else max_results

    async def search(self, query: str) -> MentionSearchResult:
        """Search entities matching query. An empty query browses the default set."""
        logger.debug(f"Searching mentions for: {query!r}")

        try:
            # supabase client is synchronous; keep the event loop free
            rows = await asyncio.to_thread(self.db.search_mentions, query, self.max_results)
        except Exception as e:
            logger.error(f"Mention search failed for {query!r}: {e}", exc_info=True)
            return MentionSearchResult(query=query, error=str(e))

        candidates = []
        for row in rows:
            try:
                candidates.append(MentionCandidate.from_rpc_row(row))
            except UnknownEntityTypeError as e:
                logger.warning(f"Skipping search result {row.get('entity_id')}: {e}")
            except (KeyError, ValidationError) as e:
                logger.warning(f"Skipping malformed search result {row}: {e}")

        return MentionSearchResult(query=query, candidates=candidates[:self.max_results])


class MentionSearchController:
    """Debounced, stale-safe mention dropdown state for one chat window"""

    def __init__(
        self,
        search_service: MentionSearchService,
        debounce_seconds: Optional[float] = None,
        on_change: Optional[Callable[["MentionSearchController"], None]] = None,
    ):
        self.search_service = search_service
        self.debounce_seconds = (
            settings.MENTION_SEARCH_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        )
        self.on_change = on_change

        self.is_open = False
        self.query: Optional[str] = None
        self.candidates: List[MentionCandidate] = []
        self.error: Optional[str] = None
        self.is_loading = False
        self.highlighted_index = 0

        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    def update(self, term: str) -> asyncio.Task:
        """Start a search for term, superseding any search still in flight"""
        self._generation += 1
        self._cancel_pending()

        self.is_open = True
        self.query = term
        self.is_loading = True
        self.error = None

        self._task = asyncio.get_running_loop().create_task(self._run(self._generation, term))
        return self._task

    async def _run(self, generation: int, term: str) -> Optional[MentionSearchResult]:
        if self.debounce_seconds > 0:
            await asyncio.sleep(self.debounce_seconds)

        result = await self.search_service.search(term)

        if generation != self._generation:
            logger.debug(f"Discarding stale mention results for {term!r}")
            return None

        self.candidates = result.candidates
        self.error = result.error
        self.is_loading = False
        self.highlighted_index = 0
        self._notify()
        return result

    async def wait(self) -> Optional[MentionSearchResult]:
        """Wait for the current search to settle"""
        task = self._task
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    def close(self):
        """Close the dropdown and reset selection state"""
        self._generation += 1
        self._cancel_pending()

        self.is_open = False
        self.query = None
        self.candidates = []
        self.error = None
        self.is_loading = False
        self.highlighted_index = 0
        self._notify()

    def move_highlight(self, step: int):
        if not self.candidates:
            return
        self.highlighted_index = (self.highlighted_index + step) % len(self.candidates)
        self._notify()

    def highlighted(self) -> Optional[MentionCandidate]:
        if not self.candidates:
            return None
        return self.candidates[self.highlighted_index]

    @property
    def has_candidates(self) -> bool:
        return self.is_open and bool(self.candidates)

    def _cancel_pending(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _notify(self):
        if self.on_change:
            self.on_change(self)
