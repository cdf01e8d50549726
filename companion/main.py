"""
コンパニオンチャットAPI - メインアプリケーション
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from companion.config import (
    CORS_ORIGINS,
    LOG_LEVEL,
    OLLAMA_API_KEY,
    OLLAMA_BASE_URL,
    OLLAMA_GENERAL_MODEL,
    OLLAMA_LONGFORM_MODEL,
    OLLAMA_TIMEOUT_SECONDS,
)
from companion.chat_service import ChatOrchestrator, ConversationNotFoundError
from companion.crud.companion import ConfigConflictError, ConfigurationError
from companion.database import build_engine, build_session_factory
from companion.llm_gateway import LLMGateway
from companion.models import Base
from companion.quota import QuotaExceededError
from companion.routers import admin, auth, chat, conversations, health, settings

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    """ドメイン例外をHTTPレスポンスに変換"""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                "message": error.get("msg", ""),
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation error", "details": details},
        )

    @app.exception_handler(QuotaExceededError)
    async def quota_exception_handler(request: Request, exc: QuotaExceededError):
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=exc.as_response())

    @app.exception_handler(ConfigurationError)
    async def configuration_exception_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Companion not configured"},
        )

    @app.exception_handler(ConfigConflictError)
    async def conflict_exception_handler(request: Request, exc: ConfigConflictError):
        logger.warning(f"Configuration conflict on {request.url.path}: {exc}")
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(ConversationNotFoundError)
    async def conversation_not_found_handler(request: Request, exc: ConversationNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Conversation not found"})


def create_app(engine=None, gateway: Optional[LLMGateway] = None) -> FastAPI:
    """
    アプリケーションの組み立て

    Args:
        engine: SQLAlchemyエンジン（省略時は DATABASE_URL から作成）
        gateway: LLMゲートウェイ（省略時は環境変数の設定で作成し、終了時に閉じる）
    """
    engine = engine if engine is not None else build_engine()
    session_factory = build_session_factory(engine)
    owns_gateway = gateway is None
    if gateway is None:
        gateway = LLMGateway(
            base_url=OLLAMA_BASE_URL,
            api_key=OLLAMA_API_KEY,
            general_model=OLLAMA_GENERAL_MODEL,
            long_form_model=OLLAMA_LONGFORM_MODEL,
            timeout=OLLAMA_TIMEOUT_SECONDS,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        logger.info(f"Companion API started (Ollama at {gateway.base_url})")
        yield
        if owns_gateway:
            await gateway.aclose()

    # FastAPIアプリケーションの初期化
    app = FastAPI(
        title="Companion Chat API",
        description="セルフホストLLMを使ったAIコンパニオンとのチャットAPI",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.gateway = gateway
    app.state.orchestrator = ChatOrchestrator(gateway, session_factory)

    # CORS設定
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    # ルートエンドポイント
    @app.get("/")
    async def root():
        """APIの稼働確認用エンドポイント"""
        return {
            "message": "Companion Chat API",
            "status": "running",
            "version": "1.0.0",
        }

    # ルーターの登録
    app.include_router(auth.router)
    app.include_router(chat.router)
    app.include_router(conversations.router)
    app.include_router(settings.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()
