"""
Knowledge entry persistence.

Version: 1.0.0
"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_session_factory
from ..models.knowledge import KnowledgeEntry

logger = logging.getLogger(__name__)


class KnowledgeServiceError(Exception):
    """Knowledge entries could not be read or written."""
    pass


class KnowledgeService:
    """Store for Q&A pairs learned from resolved tickets."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @contextmanager
    def _session(self):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def _run(self, fn: Callable, *args) -> Any:
        try:
            return await asyncio.get_event_loop().run_in_executor(None, fn, *args)
        except SQLAlchemyError as e:
            logger.error(f"Knowledge database error: {e}", exc_info=True)
            raise KnowledgeServiceError(str(e)) from e

    async def add_entry(
        self,
        question: str,
        answer: str,
        category: str = "general",
        ticket_source: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Store an active Q&A pair.

        Raises:
            KnowledgeServiceError: Empty question/answer or database failure
        """
        if not (question or "").strip() or not (answer or "").strip():
            raise KnowledgeServiceError("Question and answer are required")

        entry = await self._run(
            self._add_entry_sync,
            question.strip(),
            answer.strip(),
            (category or "general").strip(),
            ticket_source
        )
        logger.info(
            f"✓ Added knowledge entry {entry['id']} ({entry['category']})",
            extra={"ticket_number": ticket_source}
        )
        return entry

    def _add_entry_sync(
        self,
        question: str,
        answer: str,
        category: str,
        ticket_source: Optional[str]
    ) -> Dict[str, Any]:
        with self._session() as db:
            entry = KnowledgeEntry(
                question=question,
                answer=answer,
                category=category,
                ticket_source=ticket_source,
                is_active=True
            )
            db.add(entry)
            db.flush()
            return entry.to_dict()

    async def list_active_entries(self) -> List[Dict[str, Any]]:
        """Active entries, oldest first."""
        return await self._run(self._list_active_sync)

    def _list_active_sync(self) -> List[Dict[str, Any]]:
        with self._session() as db:
            entries = db.query(KnowledgeEntry).filter(
                KnowledgeEntry.is_active.is_(True)
            ).order_by(KnowledgeEntry.created_at, KnowledgeEntry.id).all()
            return [e.to_dict() for e in entries]

    async def get_stats(self) -> Dict[str, Any]:
        return await self._run(self._get_stats_sync)

    def _get_stats_sync(self) -> Dict[str, Any]:
        with self._session() as db:
            rows = db.query(
                KnowledgeEntry.category,
                KnowledgeEntry.is_active,
                func.count(KnowledgeEntry.id)
            ).group_by(KnowledgeEntry.category, KnowledgeEntry.is_active).all()

        by_category: Dict[str, int] = {}
        active = inactive = 0
        for category, is_active, count in rows:
            if is_active:
                active += count
                by_category[category] = by_category.get(category, 0) + count
            else:
                inactive += count

        return {
            "total_entries": active + inactive,
            "active_entries": active,
            "inactive_entries": inactive,
            "by_category": by_category
        }


__all__ = [
    'KnowledgeService',
    'KnowledgeServiceError',
]
