"""
ユーザー関連のCRUD操作
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from companion.models.conversation import WeeklyMessageUsage
from companion.models.user import User, UserPreference
from companion.security import get_password_hash, verify_password


def get_user(db: Session, user_id: str) -> Optional[User]:
    """IDでユーザーを取得"""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """メールアドレスでユーザーを取得"""
    return db.query(User).filter(User.email == email).first()


def count_users(db: Session) -> int:
    return db.query(func.count(User.id)).scalar() or 0


def create_user(
    db: Session,
    email: str,
    password: str,
    display_name: Optional[str] = None,
    is_admin: bool = False,
) -> User:
    """新規ユーザーの作成（デフォルトのユーザー設定も作成）"""
    db_user = User(
        email=email,
        hashed_password=get_password_hash(password),
        display_name=display_name or email.split("@")[0],
        is_admin=is_admin,
    )
    db_user.preferences = UserPreference()

    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    return db_user


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    """ユーザーの認証"""
    user = get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def update_user_fields(db: Session, user: User, **fields) -> User:
    """ユーザーの属性を更新"""
    for key, value in fields.items():
        setattr(user, key, value)
    user.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return user


def get_preferences(db: Session, user_id: str) -> Optional[UserPreference]:
    return db.query(UserPreference).filter(UserPreference.user_id == user_id).first()


def update_preferences(db: Session, user_id: str, **fields) -> UserPreference:
    """ユーザー設定を更新（存在しない場合は作成）"""
    prefs = get_preferences(db, user_id)
    if prefs is None:
        prefs = UserPreference(user_id=user_id)
        db.add(prefs)
    for key, value in fields.items():
        if value is not None:
            setattr(prefs, key, value)
    prefs.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(prefs)
    return prefs


def delete_user(db: Session, user: User) -> None:
    """ユーザーを削除（会話・メッセージ・セッション・使用数カウンターも削除）"""
    db.query(WeeklyMessageUsage).filter(
        WeeklyMessageUsage.user_id == user.id
    ).delete(synchronize_session=False)
    db.delete(user)
    db.commit()
