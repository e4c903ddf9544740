# app/services/chat_service.py
import asyncio
from functools import lru_cache
import logging
from typing import Callable, Optional, Tuple

from app.agents.sanction_agent import (
    generate_decision_summary,
    generate_rejection_response,
    generate_sanction_message,
    sanction_letter_fields,
)
from app.agents.stage_machine import RESTART_MESSAGE, transition
from app.agents.underwriting_agent import UnderwritingDecision, decide, decision_patch
from app.agents.verification_agent import IdentityVerifier
from app.core.config import settings
from app.models.domain_models import (
    Application,
    ConversationStage as Stage,
    LoanSession,
    Speaker,
    utcnow,
)
from app.models.responses import TurnResult
from app.services.extractors import extract_tax_id
from app.services.llm_client import OpenRouterClient
from app.services.mock_data_service import LoanCatalog, load_loan_catalog
from app.services.pdf_service import generate_sanction_letter
from app.services.session_store import InMemorySessionStore, SessionLocks, SessionStore

logger = logging.getLogger(__name__)

GENERIC_RETRY_REPLY = (
    "I apologize, but I encountered an error. Let me try again.\n\n"
    "Could you please repeat your last message?"
)


class ChatService:
    """
    Runs one chat turn end to end: load the session, step the stage machine,
    underwrite when collection is complete, then commit.

    Everything a turn changes is built on a detached copy and written back in
    a single store call at the end, so a failed turn changes nothing.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        catalog: Optional[LoanCatalog] = None,
        verifier: Optional[IdentityVerifier] = None,
        llm: Optional[OpenRouterClient] = None,
        letter_renderer: Callable[[str, dict, str], str] = generate_sanction_letter,
        downloads_dir: Optional[str] = None,
        pdf_timeout: Optional[float] = None,
        llm_timeout: Optional[float] = None,
        phrasing_enabled: Optional[bool] = None,
        bank_name: Optional[str] = None,
        clock: Callable = utcnow,
    ):
        self.store = store or InMemorySessionStore()
        self.catalog = catalog or load_loan_catalog()
        self.verifier = verifier or IdentityVerifier()
        self.llm = llm or OpenRouterClient()
        self.letter_renderer = letter_renderer
        self.downloads_dir = downloads_dir or settings.DOWNLOADS_DIR
        self.pdf_timeout = pdf_timeout if pdf_timeout is not None else settings.PDF_TIMEOUT_SECONDS
        self.llm_timeout = llm_timeout if llm_timeout is not None else settings.LLM_TIMEOUT_SECONDS
        self.phrasing_enabled = (
            phrasing_enabled if phrasing_enabled is not None else settings.LLM_PHRASING_ENABLED
        )
        self.bank_name = bank_name or settings.BANK_NAME
        self.clock = clock
        self.locks = SessionLocks()

    # -------------------------
    # public API
    # -------------------------

    async def process_turn(self, session_id: str, text: str) -> TurnResult:
        async with self.locks.hold(session_id):
            try:
                return await self._run_turn(session_id, text)
            except Exception:
                logger.exception("chat turn failed for session %s", session_id)
                return await self._failed_turn(session_id)

    async def get_session(self, session_id: str) -> Optional[LoanSession]:
        return await self.store.get(session_id)

    async def clear_session(self, session_id: str) -> bool:
        async with self.locks.hold(session_id):
            return await self.store.delete(session_id)

    async def purge_expired_sessions(self, max_age_seconds: Optional[int] = None) -> int:
        ttl = max_age_seconds or settings.SESSION_TTL_SECONDS
        if not ttl:
            return 0
        return await self.store.purge_expired(ttl, protected=self.locks.held_ids())

    # -------------------------
    # turn handling
    # -------------------------

    async def _run_turn(self, session_id: str, text: str, fresh: bool = False) -> TurnResult:
        now = self.clock()
        stored = None if fresh else await self.store.get(session_id)
        session = stored if stored is not None else LoanSession.start(session_id, now)
        if stored is None:
            logger.info("starting session %s (application %s)", session_id, session.application.application_id)
            if settings.SESSION_TTL_SECONDS:
                await self.purge_expired_sessions()

        session = session.with_message(Speaker.USER, text, now)

        # identity is resolved here so the stage machine itself stays free of I/O
        identity = None
        if session.stage == Stage.VERIFICATION and session.application.credit_score is None:
            tax_id = extract_tax_id(text)
            if tax_id:
                identity = await self.verifier.verify(tax_id)

        step = transition(
            session.stage, session.step, session.application, text, self.catalog, identity
        )

        if step.reset:
            if fresh:
                raise RuntimeError("restart message asked for another restart")
            logger.info("session %s: starting a new application", session_id)
            return await self._run_turn(session_id, RESTART_MESSAGE, fresh=True)

        previous_stage = session.stage
        if step.next_stage != previous_stage:
            logger.info("session %s: %s -> %s", session_id, session.stage.value, step.next_stage.value)
        session = session.advanced(step.next_stage, step.next_step, step.patch, now)
        reply = step.reply

        # underwriting runs once, on the turn that completes the application
        if session.stage == Stage.UNDERWRITING and previous_stage != Stage.UNDERWRITING:
            session, reply = await self._underwrite(session, reply, now)

        session = session.with_message(Speaker.ASSISTANT, reply, now)

        if stored is None:
            await self.store.create(session, protected=self.locks.held_ids())
        else:
            await self.store.update(session)

        return self._result(session, reply)

    async def _underwrite(self, session: LoanSession, verification_reply: str, now) -> Tuple[LoanSession, str]:
        result = decide(session.application, self.catalog)
        logger.info(
            "application %s underwritten: %s by %s (risk score %s)",
            session.application.application_id,
            result.decision.value,
            result.rule,
            result.risk_score,
        )

        # every decision field lands in this one patch
        session = session.advanced(
            Stage.DECISION, None, decision_patch(result, session.application.tenure_months), now
        )
        application = session.application

        if result.approved:
            filename = await self._render_letter(application)
            if filename:
                reply = generate_sanction_message(application, self.bank_name)
                session = session.advanced(Stage.COMPLETED, None, {}, now)
                session = session.model_copy(update={"sanction_letter_url": f"/downloads/{filename}"})
            else:
                reply = f"{verification_reply}\n\n{generate_decision_summary(application, result)}"
        else:
            reply = generate_rejection_response(application, result.reason, self.bank_name)
            session = session.advanced(Stage.COMPLETED, None, {}, now)

        explanation = await self._explain(result, application)
        if explanation:
            reply = f"{reply}\n\n{explanation}"

        return session, reply

    async def _render_letter(self, application: Application) -> Optional[str]:
        try:
            fields = sanction_letter_fields(application)
            return await asyncio.wait_for(
                asyncio.to_thread(self.letter_renderer, self.downloads_dir, fields, self.bank_name),
                timeout=self.pdf_timeout,
            )
        except Exception as exc:
            logger.warning("sanction letter for %s not generated: %r", application.application_id, exc)
            return None

    async def _explain(self, result: UnderwritingDecision, application: Application) -> Optional[str]:
        if not self.phrasing_enabled:
            return None
        try:
            return await asyncio.wait_for(
                self.llm.explain_decision(result.decision, result.reason, application.full_name),
                timeout=self.llm_timeout,
            )
        except Exception as exc:
            logger.warning("decision phrasing unavailable for %s: %r", application.application_id, exc)
            return None

    async def _failed_turn(self, session_id: str) -> TurnResult:
        try:
            committed = await self.store.get(session_id)
        except Exception:
            logger.exception("could not reload session %s after a failed turn", session_id)
            committed = None

        if committed is None:
            return TurnResult(reply=GENERIC_RETRY_REPLY)
        return self._result(committed, GENERIC_RETRY_REPLY)

    @staticmethod
    def _result(session: LoanSession, reply: str) -> TurnResult:
        return TurnResult(
            reply=reply,
            application=session.application,
            stage=session.stage,
            status=session.application.status,
            is_terminal=session.is_terminal,
            pdf_url=session.sanction_letter_url,
        )


def build_session_store() -> SessionStore:
    if settings.SESSION_BACKEND == "sql":
        from app.services.sql_session_store import SqlSessionStore

        return SqlSessionStore(database_url=settings.DATABASE_URL)
    if settings.SESSION_BACKEND != "memory":
        raise ValueError(f"unknown SESSION_BACKEND {settings.SESSION_BACKEND!r}")
    return InMemorySessionStore(max_sessions=settings.MAX_SESSIONS)


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    return ChatService(store=build_session_store())
