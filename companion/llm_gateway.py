"""
Ollama（セルフホストLLMサーバー）との通信

Mistral Instruct形式のプロンプトを使用:
[INST] ユーザーメッセージ [/INST] アシスタントの応答
"""
import json
import re
import logging
from typing import AsyncIterator, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

# 出力の途中に現れた完全な区切りトークン（モデルが次のターンを書き始めた）
_DELIMITER_MARKER = re.compile(r"\[/?INST\]")

# 末尾に残る区切りトークンの断片: 空白、単独の "<"、"[INST]" / "[/INST]" の接頭辞
_ARTIFACT_FRAGMENTS = tuple(sorted(
    {"[" + token[:n] for token in ("INST]", "/INST]") for n in range(len(token) + 1)},
    key=len,
    reverse=True,
))


class UpstreamGenerationError(Exception):
    """LLMバックエンドのエラー（非2xx応答・接続失敗）"""
    pass


def _trailing_artifact_start(text: str) -> int:
    """末尾の断片の開始位置（末尾から後ろ向きに走査する）"""
    end = len(text)
    while end > 0:
        char = text[end - 1]
        if char.isspace() or char == "<":
            end -= 1
            continue
        for fragment in _ARTIFACT_FRAGMENTS:
            if text.endswith(fragment, 0, end):
                end -= len(fragment)
                break
        else:
            break
    return end


def clean_output(text: str) -> str:
    """
    生成結果から区切りトークンの残骸を取り除く

    最初の完全な [INST] / [/INST] 以降を切り捨て、末尾の断片を除去する。
    何度適用しても結果は変わらない。
    """
    if not text:
        return ""
    marker = _DELIMITER_MARKER.search(text)
    if marker:
        text = text[:marker.start()]
    return text[:_trailing_artifact_start(text)]


def split_trailing_artifacts(text: str) -> tuple[str, str]:
    """(確定して送出できる部分, 区切りトークンの可能性がある末尾) に分割"""
    start = _trailing_artifact_start(text)
    return text[:start], text[start:]


def build_instruct_prompt(messages: List[Dict[str, str]]) -> str:
    """
    メッセージ列をMistral Instruct形式の1つのプロンプトに変換

    システムメッセージは最初のユーザーターンに含める
    """
    prompt = ""
    system_prompt = ""
    for message in messages:
        role, content = message["role"], message["content"]
        if role == "system":
            system_prompt = content
        elif role == "user":
            if system_prompt and prompt == "":
                prompt += f"[INST] {system_prompt}\n\n{content} [/INST]"
                system_prompt = ""
            else:
                prompt += f"[INST] {content} [/INST]"
        elif role == "assistant":
            prompt += f" {content}"
    return prompt


class LLMGateway:
    """Ollama API のアダプター（プロセス起動時に1度だけ生成して注入する）"""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        general_model: str = "darkplanet-general:latest",
        long_form_model: str = "dolphin-mixtral:latest",
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.general_model = general_model
        self.long_form_model = long_form_model
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        else:
            logger.warning("OLLAMA_API_KEY is not set. Requests will be sent without authorization.")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def select_model(
        self,
        length: str,
        use_long_form_for_detailed: bool,
        general_model: Optional[str] = None,
        long_form_model: Optional[str] = None,
    ) -> str:
        """レスポンス長からモデルを選択（管理画面の設定値があれば優先）"""
        if length == "detailed" and use_long_form_for_detailed:
            return long_form_model or self.long_form_model
        return general_model or self.general_model

    async def generate(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.8,
        max_tokens: int = 1000,
    ) -> str:
        """ブロッキング生成（/api/generate）"""
        payload = {
            "model": model,
            "prompt": build_instruct_prompt(messages),
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        logger.info(f"Calling Ollama generate with model {model} (max_tokens={max_tokens})")
        try:
            response = await self._client.post(
                f"{self.base_url}/api/generate", json=payload, headers=self._headers
            )
        except httpx.HTTPError as e:
            raise UpstreamGenerationError(f"Ollama connection failed: {e}") from e
        if response.status_code >= 400:
            raise UpstreamGenerationError(f"Ollama API error: {response.status_code} - {response.text}")
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamGenerationError("Ollama returned invalid JSON") from e
        raw = data.get("response", "")
        logger.debug(f"Ollama raw response (first 500 chars): {raw[:500]}")
        return clean_output(raw)

    async def generate_stream(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.8,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]:
        """
        ストリーミング生成（/api/chat、改行区切りJSON）

        区切りトークンの断片かもしれない末尾は次のチャンクが届くまで保留し、
        完了時に clean_output を通して空でなければ送出する。
        ジェネレーターを閉じると上流のレスポンスも閉じる。
        """
        payload = {
            "model": model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "stream": True,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        logger.info(f"Calling Ollama chat stream with model {model} (max_tokens={max_tokens})")
        held = ""
        try:
            async with self._client.stream(
                "POST", f"{self.base_url}/api/chat", json=payload, headers=self._headers
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise UpstreamGenerationError(f"Ollama API error: {response.status_code} - {body}")

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except ValueError:
                        logger.debug(f"Skipping malformed stream line: {line[:100]}")
                        continue
                    if not isinstance(data, dict):
                        continue

                    content = (data.get("message") or {}).get("content") or ""
                    if content:
                        candidate = held + content
                        marker = _DELIMITER_MARKER.search(candidate)
                        if marker:
                            # 次のターンの書き始め。以降は破棄して終了
                            head = clean_output(candidate[:marker.start()])
                            held = ""
                            if head:
                                yield head
                            logger.info("Delimiter marker found in stream. Stopping generation.")
                            return
                        ready, held = split_trailing_artifacts(candidate)
                        if ready:
                            yield ready

                    if data.get("done"):
                        break
        except httpx.HTTPError as e:
            raise UpstreamGenerationError(f"Ollama stream failed: {e}") from e

        tail = clean_output(held)
        if tail:
            yield tail

    async def list_models(self) -> List[str]:
        """利用可能なモデル一覧（/api/tags）"""
        try:
            response = await self._client.get(f"{self.base_url}/api/tags", headers=self._headers)
        except httpx.HTTPError as e:
            raise UpstreamGenerationError(f"Ollama connection failed: {e}") from e
        if response.status_code >= 400:
            raise UpstreamGenerationError(f"Failed to get models: {response.status_code}")
        data = response.json()
        return [m["name"] for m in data.get("models") or [] if "name" in m]

    async def test_connection(self) -> dict:
        """接続確認（診断用、例外は出さない）"""
        try:
            models = await self.list_models()
            return {"success": True, "models": models}
        except (UpstreamGenerationError, ValueError) as e:
            return {"success": False, "error": str(e)}
