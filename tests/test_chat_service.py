import asyncio
from pathlib import Path

import pytest

from app.agents.verification_agent import IdentityVerifier, MockIdentityDirectory
from app.models.domain_models import ApplicationStatus, ConversationStage as Stage
from app.services.chat_service import GENERIC_RETRY_REPLY, ChatService, build_session_store
from app.services.session_store import InMemorySessionStore

APPROVED_SCRIPT = [
    "Hi, I want a personal loan",
    "5 lakhs",
    "3 years",
    "Rahul Sharma",
    "rahul.sharma@example.com",
    "9876543210",
    "salaried",
    "Infosys Ltd",
    "85000",
    "ABCDE1234F",
]

REJECTED_SCRIPT = [
    "Hi, I want a personal loan",
    "2 lakhs",
    "2 years",
    "Arjun Mehta",
    "arjun.mehta@example.com",
    "8899776655",
    "salaried",
    "Mehta Logistics",
    "30000",
    "LMNOP4321Z",
]


class FlakyStore(InMemorySessionStore):
    """Fails the next update once ``fail_updates`` is set."""

    fail_updates = False

    async def update(self, session):
        if self.fail_updates:
            raise RuntimeError("database went away")
        return await super().update(session)


class FakeLLM:
    def __init__(self, text="Keep up the good repayment habits."):
        self.text = text
        self.calls = []

    async def explain_decision(self, decision, reason, applicant_name):
        self.calls.append((decision, applicant_name))
        return self.text


def make_service(tmp_path, **kwargs):
    kwargs.setdefault("downloads_dir", str(tmp_path))
    kwargs.setdefault("phrasing_enabled", False)
    return ChatService(**kwargs)


async def play(service, session_id, script):
    result = None
    for message in script:
        result = await service.process_turn(session_id, message)
    return result


def test_full_conversation_is_approved_with_letter(tmp_path):
    service = make_service(tmp_path)

    async def scenario():
        result = await play(service, "s-approve", APPROVED_SCRIPT)
        session = await service.get_session("s-approve")
        return result, session

    result, session = asyncio.run(scenario())

    assert result.stage == Stage.COMPLETED
    assert result.status == ApplicationStatus.APPROVED
    assert result.is_terminal
    assert result.pdf_url.startswith("/downloads/sanction_letter_")
    assert "Congratulations, Rahul Sharma" in result.reply

    filename = result.pdf_url.rsplit("/", 1)[1]
    assert (Path(tmp_path) / filename).read_bytes().startswith(b"%PDF")

    application = session.application
    assert application.approved_amount == 500_000
    assert application.interest_rate == 12.5
    assert application.credit_score_source == "bureau"
    assert application.monthly_installment is not None
    assert len(session.history) == 2 * len(APPROVED_SCRIPT)


def test_low_credit_score_is_rejected(tmp_path):
    service = make_service(tmp_path)
    result = asyncio.run(play(service, "s-reject", REJECTED_SCRIPT))

    assert result.stage == Stage.COMPLETED
    assert result.status == ApplicationStatus.REJECTED
    assert result.pdf_url is None
    assert "Credit score of 640" in result.reply
    assert result.application.approved_amount is None


def test_letter_failure_leaves_approved_session_in_decision(tmp_path):
    def broken_renderer(output_dir, letter, bank_name):
        raise OSError("disk full")

    service = make_service(tmp_path, letter_renderer=broken_renderer)
    result = asyncio.run(play(service, "s-noletter", APPROVED_SCRIPT))

    assert result.stage == Stage.DECISION
    assert result.status == ApplicationStatus.APPROVED
    assert result.is_terminal
    assert result.pdf_url is None
    assert "Loan Decision Summary" in result.reply
    assert result.application.approved_amount == 500_000


def test_failed_turn_leaves_session_untouched(tmp_path):
    store = FlakyStore()
    service = make_service(tmp_path, store=store)

    async def scenario():
        await play(service, "s-flaky", APPROVED_SCRIPT[:2])
        before = await store.get("s-flaky")
        store.fail_updates = True
        result = await service.process_turn("s-flaky", "3 years")
        after = await store.get("s-flaky")
        return before, result, after

    before, result, after = asyncio.run(scenario())

    assert result.reply == GENERIC_RETRY_REPLY
    assert result.stage == Stage.TENURE
    assert after == before
    assert after.application.tenure_months is None


def test_new_application_after_rejection_starts_fresh(tmp_path):
    service = make_service(tmp_path)

    async def scenario():
        first = await play(service, "s-again", REJECTED_SCRIPT)
        old = await service.get_session("s-again")
        restarted = await service.process_turn("s-again", "new application")
        new = await service.get_session("s-again")
        return first, old, restarted, new

    first, old, restarted, new = asyncio.run(scenario())

    assert first.status == ApplicationStatus.REJECTED
    assert restarted.stage == Stage.LOAN_TYPE
    assert restarted.status == ApplicationStatus.IN_PROGRESS
    assert new.application.application_id != old.application.application_id
    assert new.application.decision is None
    assert len(new.history) == 2


def test_download_request_after_approval_keeps_session(tmp_path):
    service = make_service(tmp_path)

    async def scenario():
        done = await play(service, "s-dl", APPROVED_SCRIPT)
        again = await service.process_turn("s-dl", "how do I download the letter?")
        return done, again

    done, again = asyncio.run(scenario())
    assert again.stage == Stage.COMPLETED
    assert again.pdf_url == done.pdf_url
    assert "download your sanction letter" in again.reply


def test_decision_explanation_is_appended_when_enabled(tmp_path):
    llm = FakeLLM()
    service = make_service(tmp_path, llm=llm, phrasing_enabled=True)
    result = asyncio.run(play(service, "s-llm", REJECTED_SCRIPT))

    assert result.reply.endswith("Keep up the good repayment habits.")
    assert len(llm.calls) == 1
    assert llm.calls[0][1] == "Arjun Mehta"


def test_missing_explanation_keeps_canned_reply(tmp_path):
    service = make_service(tmp_path, llm=FakeLLM(text=None), phrasing_enabled=True)
    result = asyncio.run(play(service, "s-nollm", REJECTED_SCRIPT))
    assert result.reply.rstrip().endswith('Type "new application" to start again.')


def test_sessions_are_isolated(tmp_path):
    service = make_service(tmp_path)

    async def scenario():
        await asyncio.gather(
            play(service, "alpha", APPROVED_SCRIPT[:3]),
            play(service, "beta", ["Hi, I want a home loan"]),
        )
        return await service.get_session("alpha"), await service.get_session("beta")

    alpha, beta = asyncio.run(scenario())
    assert alpha.application.loan_type == "personal"
    assert alpha.stage == Stage.PERSONAL_INFO
    assert beta.application.loan_type == "home"
    assert beta.stage == Stage.AMOUNT


def test_clear_and_purge(tmp_path):
    service = make_service(tmp_path)

    async def scenario():
        await service.process_turn("s-clear", "hello")
        cleared = await service.clear_session("s-clear")
        gone = await service.get_session("s-clear")
        purged = await service.purge_expired_sessions(max_age_seconds=3600)
        return cleared, gone, purged

    cleared, gone, purged = asyncio.run(scenario())
    assert cleared is True
    assert gone is None
    assert purged == 0


def test_unknown_session_backend_is_refused(monkeypatch):
    from app.core import config

    monkeypatch.setattr(config.settings, "SESSION_BACKEND", "redis")
    with pytest.raises(ValueError):
        build_session_store()


class SlowBureau(MockIdentityDirectory):
    def __init__(self, delay):
        self.delay = delay

    async def lookup(self, tax_id):
        await asyncio.sleep(self.delay)
        return await super().lookup(tax_id)


def test_full_store_never_evicts_a_session_mid_turn(tmp_path):
    store = InMemorySessionStore(max_sessions=1)
    verifier = IdentityVerifier(directory=SlowBureau(0.2))
    service = make_service(tmp_path, store=store, verifier=verifier)

    async def newcomer():
        await asyncio.sleep(0.05)
        return await service.process_turn("newcomer", "hello")

    async def scenario():
        await play(service, "busy", APPROVED_SCRIPT[:-1])
        busy, fresh = await asyncio.gather(
            service.process_turn("busy", APPROVED_SCRIPT[-1]),
            newcomer(),
        )
        return busy, fresh, await store.get("busy")

    busy, fresh, stored = asyncio.run(scenario())

    assert busy.reply != GENERIC_RETRY_REPLY
    assert busy.status == ApplicationStatus.APPROVED
    assert stored is not None
    assert stored.application.credit_score == 780
    assert fresh.stage == Stage.LOAN_TYPE
