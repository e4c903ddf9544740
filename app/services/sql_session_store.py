# app/services/sql_session_store.py
import asyncio
from datetime import timedelta
import logging
from typing import Collection, List, Optional

from sqlmodel import Session, select

from app.core.db import build_engine, init_db
from app.models.domain_models import LoanSession, SessionRecord, utcnow
from app.services.session_store import SessionNotFoundError, SessionStore

logger = logging.getLogger(__name__)


class SqlSessionStore(SessionStore):
    """
    SessionStore on any SQLAlchemy database via SQLModel.

    The whole LoanSession is kept as one JSON document per row. Blocking
    database calls run in a worker thread so the event loop stays free.
    """

    def __init__(self, engine=None, database_url: Optional[str] = None):
        self.engine = engine or build_engine(database_url)
        init_db(self.engine)

    # -------------------------
    # sync helpers
    # -------------------------

    def _get(self, session_id: str) -> Optional[LoanSession]:
        with Session(self.engine) as db:
            record = db.get(SessionRecord, session_id)
            if not record:
                return None
            return LoanSession.model_validate(record.payload)

    def _write(self, session: LoanSession, must_exist: bool) -> LoanSession:
        with Session(self.engine) as db:
            record = db.get(SessionRecord, session.session_id)
            if record is None:
                if must_exist:
                    raise SessionNotFoundError(session.session_id)
                record = SessionRecord(
                    session_id=session.session_id,
                    stage=session.stage.value,
                    created_at=session.created_at,
                )
            record.stage = session.stage.value
            record.payload = session.model_dump(mode="json")
            record.updated_at = session.updated_at
            db.add(record)
            db.commit()
        return session

    def _delete(self, session_id: str) -> bool:
        with Session(self.engine) as db:
            record = db.get(SessionRecord, session_id)
            if not record:
                return False
            db.delete(record)
            db.commit()
            return True

    def _list_ids(self) -> List[str]:
        with Session(self.engine) as db:
            return list(db.exec(select(SessionRecord.session_id)).all())

    def _purge(self, max_age_seconds: int, protected: Collection[str]) -> int:
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        purged = 0
        with Session(self.engine) as db:
            for record in db.exec(select(SessionRecord)).all():
                if record.session_id in protected:
                    continue
                # compare on the payload; sqlite drops tz info from the column
                if LoanSession.model_validate(record.payload).updated_at < cutoff:
                    db.delete(record)
                    purged += 1
            db.commit()
        if purged:
            logger.info("purged %d expired sessions", purged)
        return purged

    # -------------------------
    # SessionStore
    # -------------------------

    async def get(self, session_id: str) -> Optional[LoanSession]:
        return await asyncio.to_thread(self._get, session_id)

    async def create(self, session: LoanSession, protected: Collection[str] = ()) -> LoanSession:
        # unbounded, so nothing is ever evicted here
        return await asyncio.to_thread(self._write, session, False)

    async def update(self, session: LoanSession) -> LoanSession:
        return await asyncio.to_thread(self._write, session, True)

    async def delete(self, session_id: str) -> bool:
        return await asyncio.to_thread(self._delete, session_id)

    async def list_ids(self) -> List[str]:
        return await asyncio.to_thread(self._list_ids)

    async def purge_expired(self, max_age_seconds: int, protected: Collection[str] = ()) -> int:
        return await asyncio.to_thread(self._purge, max_age_seconds, frozenset(protected))
