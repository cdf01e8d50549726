"""
認証関連のルーター
"""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from companion.database import get_db
from companion.crud import user as crud_user
from companion.crud import auth_session as crud_auth_session
from companion.models.user import User
from companion.personality import list_modes
from companion.schemas import Gender, PersonalityMode
from companion.security import ACCESS, REFRESH, issue_token_pair, refresh_expiry, verify_token

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["認証"]
)

# OAuth2設定（匿名アクセスを許可するエンドポイントがあるため auto_error=False）
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

GENDER_OPTIONS = [
    {"id": "female", "name": "Female", "pronouns": "she/her"},
    {"id": "male", "name": "Male", "pronouns": "he/him"},
    {"id": "non-binary", "name": "Non-binary", "pronouns": "they/them"},
    {"id": "custom", "name": "Custom", "pronouns": None},
]


# リクエストモデル
class UserRegister(BaseModel):
    """ユーザー登録用モデル"""
    email: EmailStr
    password: str = Field(..., min_length=8)
    display_name: Optional[str] = Field(None, alias="displayName", max_length=100)

    class Config:
        populate_by_name = True


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., alias="refreshToken")

    class Config:
        populate_by_name = True


class LogoutRequest(BaseModel):
    """refreshToken を省略した場合は全セッションを削除"""
    refresh_token: Optional[str] = Field(None, alias="refreshToken")

    class Config:
        populate_by_name = True


class ChatNameUpdate(BaseModel):
    chat_name: str = Field(..., alias="chatName", min_length=1, max_length=50)

    class Config:
        populate_by_name = True


class PersonalityModeUpdate(BaseModel):
    personality_mode: PersonalityMode = Field(..., alias="personalityMode")

    class Config:
        populate_by_name = True


class GenderUpdate(BaseModel):
    gender: Gender
    custom_gender: Optional[str] = Field(None, alias="customGender", max_length=100)

    class Config:
        populate_by_name = True


def serialize_user(user: User) -> dict:
    """APIレスポンス用のユーザー情報"""
    return {
        "id": user.id,
        "email": user.email,
        "displayName": user.display_name,
        "chatName": user.chat_name,
        "isAdmin": bool(user.is_admin),
        "subscriptionStatus": user.subscription_status,
        "credits": user.credits or 0,
        "personalityMode": user.personality_mode,
        "preferredGender": user.preferred_gender,
        "customGender": user.custom_gender,
        "storagePreference": user.storage_preference,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def _start_session(db: Session, user: User) -> dict:
    """トークンを発行し、リフレッシュトークンをセッションとして保存"""
    tokens = issue_token_pair(user.id, user.email, bool(user.is_admin))
    crud_auth_session.create_auth_session(
        db, user_id=user.id, refresh_token=tokens.refresh_token, expires_at=refresh_expiry()
    )
    return {"user": serialize_user(user), **tokens.as_response()}


# 認証用の依存関数
async def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """トークンがあればユーザーを取得（無効なトークンは匿名扱い）"""
    if not token:
        return None
    payload = verify_token(token, ACCESS)
    if payload is None:
        return None
    return crud_user.get_user(db, payload["sub"])


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """トークンから現在のユーザーを取得"""
    payload = verify_token(token, ACCESS) if token else None
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = crud_user.get_user(db, payload["sub"])
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    """管理者のみ"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: Session = Depends(get_db)
):
    """新規ユーザー登録（最初のユーザーは管理者）"""
    # メールアドレスの重複チェック
    if crud_user.get_user_by_email(db, email=user_data.email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered"
        )

    is_first_user = crud_user.count_users(db) == 0
    user = crud_user.create_user(
        db=db,
        email=user_data.email,
        password=user_data.password,
        display_name=user_data.display_name,
        is_admin=is_first_user,
    )
    logger.info(f"Registered user {user.id} (admin={is_first_user})")

    return _start_session(db, user)


@router.post("/login")
async def login(
    credentials: UserLogin,
    db: Session = Depends(get_db)
):
    """ユーザーログイン"""
    user = crud_user.authenticate_user(db=db, email=credentials.email, password=credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _start_session(db, user)


@router.post("/refresh")
async def refresh(
    body: RefreshRequest,
    db: Session = Depends(get_db)
):
    """リフレッシュトークンをローテーションして新しいトークンを発行"""
    payload = verify_token(body.refresh_token, REFRESH)
    auth_session = crud_auth_session.get_by_refresh_token(db, body.refresh_token) if payload else None
    if auth_session is None or auth_session.user_id != payload["sub"]:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token"
        )

    if auth_session.expires_at < datetime.utcnow():
        crud_auth_session.delete_auth_session(db, auth_session)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token expired"
        )

    user = crud_user.get_user(db, auth_session.user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    tokens = issue_token_pair(user.id, user.email, bool(user.is_admin))
    crud_auth_session.rotate_refresh_token(db, auth_session, tokens.refresh_token, refresh_expiry())
    return tokens.as_response()


@router.post("/logout")
async def logout(
    body: Optional[LogoutRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """ログアウト（指定セッションまたは全セッション）"""
    if body is not None and body.refresh_token:
        crud_auth_session.delete_by_refresh_token(db, current_user.id, body.refresh_token)
    else:
        crud_auth_session.delete_user_sessions(db, current_user.id)
    return {"success": True}


@router.get("/me")
async def read_users_me(current_user: User = Depends(get_current_user)):
    """現在のユーザー情報を取得"""
    return {"user": serialize_user(current_user)}


@router.delete("/me")
async def delete_account(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """アカウントと全データを削除"""
    user_id = current_user.id
    crud_user.delete_user(db, current_user)
    logger.info(f"Deleted account {user_id}")
    return {"success": True}


@router.put("/chat-name")
async def update_chat_name(
    body: ChatNameUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """AIがユーザーを呼ぶ名前を設定"""
    chat_name = body.chat_name.strip()
    if not chat_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Chat name cannot be blank"
        )
    user = crud_user.update_user_fields(db, current_user, chat_name=chat_name)
    return {"user": serialize_user(user)}


@router.put("/personality-mode")
async def update_personality_mode(
    body: PersonalityModeUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = crud_user.update_user_fields(db, current_user, personality_mode=body.personality_mode)
    return {"user": serialize_user(user)}


@router.get("/personality-modes")
async def get_personality_modes(current_user: Optional[User] = Depends(get_optional_user)):
    """選択可能なパーソナリティモード"""
    return {
        "modes": list_modes(),
        "current": current_user.personality_mode if current_user else None,
    }


@router.put("/gender")
async def update_gender(
    body: GenderUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """コンパニオンの性別の好みを設定"""
    custom_gender = body.custom_gender.strip() if body.custom_gender else None
    if body.gender == "custom" and not custom_gender:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="customGender is required when gender is custom"
        )
    user = crud_user.update_user_fields(
        db,
        current_user,
        preferred_gender=body.gender,
        custom_gender=custom_gender if body.gender == "custom" else None,
    )
    return {"user": serialize_user(user)}


@router.get("/genders")
async def get_genders():
    return {"genders": GENDER_OPTIONS}
