"""
モデルのインポート
"""
# Baseを最初にインポート
from companion.database import Base

# その後でモデルをインポート
from companion.models.user import User, UserPreference
from companion.models.conversation import Conversation, Message, WeeklyMessageUsage
from companion.models.companion import CompanionConfig, SystemPrompt
from companion.models.auth_session import AuthSession

__all__ = ["Base", "User", "UserPreference", "Conversation", "Message",
           "WeeklyMessageUsage", "CompanionConfig", "SystemPrompt", "AuthSession"]
