"""
チャット関連のルーター
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from companion.database import get_db
from companion.crud.companion import get_companion_config_optional
from companion.models.user import User
from companion.routers.auth import get_optional_user
from companion.schemas import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chat",
    tags=["チャット"]
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


@router.post("")
async def chat(
    chat_request: ChatRequest,
    request: Request,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """
    ストリーミングチャット（Server-Sent Events）

    上限超過・設定なし・他人の会話IDはストリーム開始前にエラー応答になる
    （アプリケーションの例外ハンドラーで変換）
    """
    orchestrator = request.app.state.orchestrator
    prepared = orchestrator.prepare(db, chat_request, current_user, streaming=True)

    return StreamingResponse(
        orchestrator.stream_events(prepared, request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/non-streaming")
async def chat_non_streaming(
    chat_request: ChatRequest,
    request: Request,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """非ストリーミングチャット（会話履歴は使用・保存しない）"""
    orchestrator = request.app.state.orchestrator
    prepared = orchestrator.prepare(db, chat_request, current_user, streaming=False)

    try:
        return await orchestrator.complete(prepared)
    except Exception as e:
        logger.error(f"Chat generation failed (model {prepared.model}): {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate response"
        )


@router.get("/config")
async def get_chat_config(db: Session = Depends(get_db)):
    """チャット画面用の公開設定"""
    config = get_companion_config_optional(db)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Companion not configured"
        )
    return {
        "name": config.name,
        "defaultGender": config.default_gender,
        "defaultLength": config.default_length,
        "defaultStyle": config.default_style,
        "welcomeTitle": config.welcome_title,
        "welcomeMessage": config.welcome_message,
    }
