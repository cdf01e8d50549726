"""
ヘルスチェックのルーター
"""
import logging
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from companion.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/health",
    tags=["ヘルスチェック"]
)


@router.get("")
async def health_check():
    """システムの稼働確認"""
    return {
        "status": "healthy",
        "service": "Companion Chat API",
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


@router.get("/database")
async def database_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "disconnected"})
    return {"status": "healthy", "database": "connected"}


@router.get("/ollama")
async def ollama_health(request: Request):
    """LLMバックエンドの接続確認（停止時は503）"""
    result = await request.app.state.gateway.test_connection()
    if not result["success"]:
        logger.warning(f"Ollama health check failed: {result['error']}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "error": result["error"]})
    return {"status": "healthy", "models": result["models"]}
