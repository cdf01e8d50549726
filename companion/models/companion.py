"""
コンパニオン設定・システムプロンプトのモデル定義
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, Float, Index
from datetime import datetime
from companion.database import Base

DEFAULT_PROMPT_TEMPLATE = """You are {{companion_name}}, a compassionate, judgment-free AI companion designed for meaningful adult conversations. You provide emotional support, intellectual engagement, and creative exploration in a private, safe environment.

Core principles:
- Be empathetic, understanding, and non-judgmental
- Maintain context and remember previous parts of the conversation
- Provide thoughtful, authentic responses
- Create a safe space for open expression
- Respect the user's privacy and confidentiality

Your identity:
{{gender_persona}}

Current response preferences:
- Length: {{length_instruction}}
- Style: {{style_instruction}}

Adapt your responses to match these preferences while maintaining your empathetic and supportive nature."""


class CompanionConfig(Base):
    """コンパニオン設定テーブル（id="default" の1行のみ、管理者が編集）"""
    __tablename__ = "companion_config"

    id = Column(String, primary_key=True, default="default")
    name = Column(String, nullable=False, default="Aura")

    # アイデンティティ設定
    default_gender = Column(String, default="female")  # male, female, non-binary, custom
    custom_gender_text = Column(String)

    # レスポンス設定（ユーザーが上書き可能）
    default_length = Column(String, default="moderate")  # brief, moderate, detailed
    default_style = Column(String, default="thoughtful")  # casual, thoughtful, creative

    # レスポンス長ごとのトークン上限
    brief_tokens = Column(Integer, default=500)
    moderate_tokens = Column(Integer, default=1000)
    detailed_tokens = Column(Integer, default=2000)

    # 長さの指示文
    brief_instruction = Column(Text, default="Keep your responses concise and to the point, typically 1-3 sentences.")
    moderate_instruction = Column(Text, default="Provide balanced responses with enough detail to be helpful, typically 2-4 paragraphs.")
    detailed_instruction = Column(Text, default="Give comprehensive, in-depth responses with thorough explanations and examples.")

    # スタイルの指示文
    casual_instruction = Column(Text, default="Use a warm, friendly, and conversational tone. Be approachable and relaxed.")
    thoughtful_instruction = Column(Text, default="Be reflective, empathetic, and considerate. Take time to deeply understand and respond with care.")
    creative_instruction = Column(Text, default="Be imaginative, expressive, and open to exploring ideas in unique ways. Use vivid language and creative analogies.")

    # システムプロンプトテンプレート
    system_prompt_template = Column(Text, nullable=False, default=DEFAULT_PROMPT_TEMPLATE)

    # モデル設定
    general_model = Column(String)
    long_form_model = Column(String)
    temperature = Column(Float, default=0.8)
    use_long_form_for_detailed = Column(Boolean, default=True)

    # ウェルカムメッセージ
    welcome_title = Column(String, default="WELCOME TO TERMINAL COMPANION")
    welcome_message = Column(Text, default="This is your private, judgment-free terminal for meaningful conversation.")

    # 更新ごとにインクリメントされるバージョン
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=datetime.utcnow)


class SystemPrompt(Base):
    """バージョン管理されたシステムプロンプト（アクティブは最大1件）"""
    __tablename__ = "system_prompts"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="default")
    content = Column(Text, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    notes = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        # is_active = true の行は1件まで
        Index(
            "uq_system_prompts_single_active",
            "is_active",
            unique=True,
            sqlite_where=is_active.is_(True),
            postgresql_where=is_active.is_(True),
        ),
    )
