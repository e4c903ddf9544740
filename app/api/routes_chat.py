# app/api/routes_chat.py
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from app.core.config import settings
from app.schemas.chat_schemas import ChatRequest, ChatResponse, SessionSummary
from app.services.chat_service import ChatService, get_chat_service

router = APIRouter(prefix="/chat", tags=["chat"])

# mounted without the /api prefix; sanction letter urls are "/downloads/<file>"
downloads_router = APIRouter(tags=["downloads"])


# 1. One chat turn
@router.post("", response_model=ChatResponse)
async def chat(body: ChatRequest, service: ChatService = Depends(get_chat_service)):
    message = (body.message or "").strip()
    session_id = (body.session_id or "").strip()
    if not message or not session_id:
        raise HTTPException(status_code=400, detail="Message and sessionId are required")

    result = await service.process_turn(session_id, message)
    return ChatResponse(
        reply=result.reply,
        status=ChatResponse.wire_status(result.status),
        is_terminal=result.is_terminal,
        stage=result.stage,
        pdf_url=result.pdf_url,
        application=result.application,
    )


# 2. Session summary
@router.get("/session/{session_id}", response_model=SessionSummary)
async def get_session_summary(session_id: str, service: ChatService = Depends(get_chat_service)):
    session = await service.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionSummary(
        session_id=session.session_id,
        stage=session.stage,
        step=session.step,
        application=session.application,
        message_count=len(session.history),
        sanction_letter_url=session.sanction_letter_url,
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


# 3. Forget a session
@router.delete("/session/{session_id}")
async def clear_session(session_id: str, service: ChatService = Depends(get_chat_service)):
    await service.clear_session(session_id)
    return {"message": "Session cleared"}


@router.get("/health")
def chat_health():
    return {"status": "ok", "service": "chat"}


@downloads_router.get("/downloads/{filename}")
def download_letter(filename: str):
    if "/" in filename or "\\" in filename or filename in (".", ".."):
        raise HTTPException(status_code=400, detail="Invalid file name")

    path = Path(settings.DOWNLOADS_DIR) / filename
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Sanction letter not found")
    return FileResponse(str(path), media_type="application/pdf", filename=filename)
