"""
アプリケーション設定
"""
import os
from dotenv import load_dotenv

load_dotenv()

# データベース設定
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./companion.db")

# JWT設定
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-here-change-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

# Ollama設定
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_API_KEY = os.getenv("OLLAMA_API_KEY", "")
OLLAMA_GENERAL_MODEL = os.getenv("OLLAMA_GENERAL_MODEL", "darkplanet-general:latest")
OLLAMA_LONGFORM_MODEL = os.getenv("OLLAMA_LONGFORM_MODEL", "dolphin-mixtral:latest")
# 空の場合はクライアント側のタイムアウトなし（リバースプロキシ側で制御）
_timeout = os.getenv("OLLAMA_TIMEOUT_SECONDS", "")
OLLAMA_TIMEOUT_SECONDS = float(_timeout) if _timeout else None

# チャット設定
FREE_WEEKLY_MESSAGE_LIMIT = int(os.getenv("FREE_WEEKLY_MESSAGE_LIMIT", "3"))
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "10"))
DEFAULT_TEMPERATURE = 0.8

# ログ設定
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# CORS設定
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# レスポンス長ごとのトークン上限（設定行に値がない場合）
DEFAULT_TOKEN_LIMITS = {
    "brief": 500,
    "moderate": 1000,
    "detailed": 2000,
}
