"""
セキュリティ関連のユーティリティ（パスワードハッシュとJWTトークン）
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext

from companion.config import (
    SECRET_KEY,
    ALGORITHM,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_TOKEN_EXPIRE_DAYS,
)

# パスワードハッシュ化の設定
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class TokenPair:
    """アクセストークンとリフレッシュトークンの組"""
    access_token: str
    refresh_token: str
    expires_in: int  # 秒
    refresh_expires_in: int  # 秒

    def as_response(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "refreshExpiresIn": self.refresh_expires_in,
        }


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """パスワードの検証"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    """パスワードのハッシュ化"""
    return pwd_context.hash(password)


def generate_id() -> str:
    return str(uuid.uuid4())


def _create_token(user_id: str, email: str, is_admin: bool, token_type: str, expires_delta: timedelta) -> str:
    to_encode = {
        "sub": user_id,
        "email": email,
        "isAdmin": is_admin,
        "type": token_type,
        "jti": generate_id(),
        "exp": datetime.utcnow() + expires_delta,
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def issue_token_pair(user_id: str, email: str, is_admin: bool) -> TokenPair:
    """アクセストークンとリフレッシュトークンを発行"""
    access_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    refresh_delta = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
    return TokenPair(
        access_token=_create_token(user_id, email, is_admin, ACCESS, access_delta),
        refresh_token=_create_token(user_id, email, is_admin, REFRESH, refresh_delta),
        expires_in=int(access_delta.total_seconds()),
        refresh_expires_in=int(refresh_delta.total_seconds()),
    )


def verify_token(token: str, expected_type: str) -> Optional[dict]:
    """
    トークンの検証

    期限切れ・署名不一致・種別不一致の場合は例外を出さずにNoneを返す
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != expected_type or not payload.get("sub"):
        return None
    return payload


def refresh_expiry(now: Optional[datetime] = None) -> datetime:
    """リフレッシュトークンの有効期限"""
    return (now or datetime.utcnow()) + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
