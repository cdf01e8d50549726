"""
チャットリクエストの処理パイプライン

検証 → 設定・プロンプト組み立て → 上限チェック → 履歴取得 → 生成 → 保存 → 応答
"""
import json
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional
from sqlalchemy.orm import Session

from companion import quota
from companion.config import DEFAULT_TEMPERATURE, DEFAULT_TOKEN_LIMITS, HISTORY_LIMIT
from companion.crud import companion as crud_companion
from companion.crud import conversation as crud_conversation
from companion.crud.user import get_preferences
from companion.llm_gateway import LLMGateway, UpstreamGenerationError
from companion.models.companion import CompanionConfig
from companion.models.user import User
from companion.prompt_service import build_ice_breaker_prompt, resolve_complete_prompt
from companion.schemas import ChatRequest

logger = logging.getLogger(__name__)


class ConversationNotFoundError(Exception):
    """指定された会話が存在しない、またはユーザーの所有ではない"""
    pass


@dataclass
class PreparedChat:
    """生成直前までに解決した値"""
    model: str
    length: str
    style: str
    temperature: float
    max_tokens: int
    messages: List[Dict[str, str]]
    is_ice_breaker: bool
    conversation_id: Optional[str] = None
    user_message_id: Optional[str] = None
    persist: bool = False
    history: List[Dict[str, str]] = field(default_factory=list)
    user_id: Optional[str] = None
    reservation: Optional[quota.QuotaDecision] = None


def sse_event(payload: dict) -> str:
    """Server-Sent Events の1イベント"""
    return f"data: {json.dumps(payload)}\n\n"


def token_limit(config: CompanionConfig, length: str) -> int:
    limits = {
        "brief": config.brief_tokens,
        "moderate": config.moderate_tokens,
        "detailed": config.detailed_tokens,
    }
    return limits.get(length) or DEFAULT_TOKEN_LIMITS.get(length, 1000)


def resolve_length_and_style(
    db: Session,
    request: ChatRequest,
    user: Optional[User],
    config: CompanionConfig,
) -> tuple[str, str]:
    """リクエストの指定 > ユーザー設定 > コンパニオンのデフォルト"""
    prefs = get_preferences(db, user.id) if user is not None else None
    requested = request.preferences
    length = (
        (requested.length if requested else None)
        or (prefs.preferred_length if prefs else None)
        or config.default_length
        or "moderate"
    )
    style = (
        (requested.style if requested else None)
        or (prefs.preferred_style if prefs else None)
        or config.default_style
        or "thoughtful"
    )
    return length, style


class ChatOrchestrator:
    """チャットリクエスト1件ごとの処理（アプリ起動時に1度だけ生成）"""

    def __init__(self, gateway: LLMGateway, session_factory, history_limit: int = HISTORY_LIMIT):
        self.gateway = gateway
        self.session_factory = session_factory
        self.history_limit = history_limit

    def prepare(
        self,
        db: Session,
        request: ChatRequest,
        user: Optional[User],
        streaming: bool = True,
    ) -> PreparedChat:
        """
        生成前の処理をまとめて実行

        Raises:
            QuotaExceededError: 無料プランの週間上限
            ConfigurationError: コンパニオン設定がない
            ConversationNotFoundError: 他人の会話IDが指定された
        """
        uses_store = streaming and not request.store_locally
        if uses_store and request.conversation_id:
            if user is None or crud_conversation.get_user_conversation(db, request.conversation_id, user.id) is None:
                raise ConversationNotFoundError(request.conversation_id)

        config = crud_companion.get_companion_config(db)
        length, style = resolve_length_and_style(db, request, user, config)

        system_prompt = resolve_complete_prompt(db, user, request.personality_mode)

        # 名前が設定されている場合のみアイスブレイク用の指示で包む
        model_message = request.message
        is_ice_breaker = False
        if request.new_chat and user is not None and user.chat_name:
            model_message = build_ice_breaker_prompt(user.chat_name, request.message)
            is_ice_breaker = True

        model = self.gateway.select_model(
            length,
            config.use_long_form_for_detailed if config.use_long_form_for_detailed is not None else True,
            general_model=config.general_model,
            long_form_model=config.long_form_model,
        )
        prepared = PreparedChat(
            model=model,
            length=length,
            style=style,
            temperature=config.temperature if config.temperature is not None else DEFAULT_TEMPERATURE,
            max_tokens=token_limit(config, length),
            messages=[],
            is_ice_breaker=is_ice_breaker,
            user_id=user.id if user is not None else None,
        )

        # 無料ユーザーの週間上限（アイスブレイクは対象外）。設定の解決後に確保する
        if quota.applies_to(user, request.new_chat):
            prepared.reservation = quota.check_and_reserve(db, user)

        if uses_store:
            self._load_conversation(db, request, user, prepared)

        prepared.messages = (
            [{"role": "system", "content": system_prompt}]
            + prepared.history
            + [{"role": "user", "content": model_message}]
        )

        # 会話履歴にはアイスブレイクの指示ではなく元のメッセージを保存
        if prepared.persist:
            if prepared.reservation is None:
                quota.record_message(db, user)
            user_message = crud_conversation.append_message(
                db, prepared.conversation_id, "user", request.message
            )
            prepared.user_message_id = user_message.id

        return prepared

    def _load_conversation(
        self,
        db: Session,
        request: ChatRequest,
        user: Optional[User],
        prepared: PreparedChat,
    ) -> None:
        # 指定された会話の所有者は prepare の冒頭で確認済み
        conversation_id = request.conversation_id
        if not conversation_id:
            if user is None:
                return
            title = crud_conversation.seed_title(request.message, request.new_chat)
            conversation_id = crud_conversation.create_conversation(db, user.id, title).id
            logger.info(f"Created conversation {conversation_id} for user {user.id}")

        prepared.conversation_id = conversation_id
        prepared.persist = True
        prepared.history = crud_conversation.get_recent_history(db, conversation_id, self.history_limit)

    async def stream_events(
        self,
        prepared: PreparedChat,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        """
        SSEイベントを生成

        生成に失敗した場合は error イベントを送って終了する（保存済みのユーザー
        メッセージは取り消さない）。クライアントが切断した場合は上流の生成を閉じる。
        """
        full_response = ""
        stream = self.gateway.generate_stream(
            model=prepared.model,
            messages=prepared.messages,
            temperature=prepared.temperature,
            max_tokens=prepared.max_tokens,
        )
        try:
            async for chunk in stream:
                if is_disconnected is not None and await is_disconnected():
                    logger.info(f"Client disconnected during stream (conversation {prepared.conversation_id})")
                    return
                full_response += chunk
                yield sse_event({"type": "text", "content": chunk})

            assistant_message_id = None
            if prepared.persist:
                assistant_message_id = self._save_assistant_message(prepared.conversation_id, full_response)

            yield sse_event({
                "type": "done",
                "conversationId": prepared.conversation_id,
                "userMessageId": prepared.user_message_id,
                "assistantMessageId": assistant_message_id,
                "isNewChat": prepared.is_ice_breaker,
            })
        except Exception as e:
            logger.error(f"Stream error (conversation {prepared.conversation_id}): {e}", exc_info=True)
            yield sse_event({"type": "error", "error": "Stream failed"})
        finally:
            await stream.aclose()

    def _save_assistant_message(self, conversation_id: str, content: str) -> str:
        db = self.session_factory()
        try:
            message = crud_conversation.append_message(db, conversation_id, "assistant", content)
            crud_conversation.touch_conversation(db, conversation_id)
            return message.id
        finally:
            db.close()

    def _release_reservation(self, prepared: PreparedChat) -> None:
        db = self.session_factory()
        try:
            quota.release(db, prepared.user_id, prepared.reservation)
        finally:
            db.close()

    async def complete(self, prepared: PreparedChat) -> dict:
        """非ストリーミングの生成（UpstreamGenerationError は確保分を返却して送出）"""
        try:
            response = await self.gateway.generate(
                model=prepared.model,
                messages=prepared.messages,
                temperature=prepared.temperature,
                max_tokens=prepared.max_tokens,
            )
        except UpstreamGenerationError:
            if prepared.reservation is not None:
                self._release_reservation(prepared)
            raise
        return {
            "response": response,
            "model": prepared.model,
            "length": prepared.length,
            "style": prepared.style,
            "isNewChat": prepared.is_ice_breaker,
        }
