"""
ログインセッション（リフレッシュトークン）関連のCRUD操作
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from companion.models.auth_session import AuthSession


def create_auth_session(db: Session, user_id: str, refresh_token: str, expires_at: datetime) -> AuthSession:
    """リフレッシュトークンを保存"""
    db_session = AuthSession(user_id=user_id, refresh_token=refresh_token, expires_at=expires_at)
    db.add(db_session)
    db.commit()
    db.refresh(db_session)
    return db_session


def get_by_refresh_token(db: Session, refresh_token: str) -> Optional[AuthSession]:
    return db.query(AuthSession).filter(AuthSession.refresh_token == refresh_token).first()


def rotate_refresh_token(db: Session, auth_session: AuthSession, refresh_token: str, expires_at: datetime) -> AuthSession:
    """リフレッシュトークンを新しいものに差し替え"""
    auth_session.refresh_token = refresh_token
    auth_session.expires_at = expires_at
    db.commit()
    db.refresh(auth_session)
    return auth_session


def delete_auth_session(db: Session, auth_session: AuthSession) -> None:
    db.delete(auth_session)
    db.commit()


def delete_by_refresh_token(db: Session, user_id: str, refresh_token: str) -> int:
    """指定したリフレッシュトークンのセッションを削除"""
    deleted = db.query(AuthSession).filter(
        AuthSession.user_id == user_id,
        AuthSession.refresh_token == refresh_token,
    ).delete(synchronize_session=False)
    db.commit()
    return deleted


def delete_user_sessions(db: Session, user_id: str) -> int:
    """ユーザーの全セッションを削除"""
    deleted = db.query(AuthSession).filter(
        AuthSession.user_id == user_id
    ).delete(synchronize_session=False)
    db.commit()
    return deleted
