from __future__ import annotations

import json
import os
import time
from pathlib import Path
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from langchain_core.messages import SystemMessage, HumanMessage
from langchain_openai import ChatOpenAI
from dotenv import load_dotenv

from .errors import ContentServiceError


_SYSTEM_PROMPT = (
    "You write dialogue for an Ace Attorney style courtroom drama played live in a chat room. "
    "Always answer with a single JSON value that satisfies OUTPUT_CONTRACT. "
    "No markdown, no code fences, no commentary."
)


def load_env(candidates: Optional[List[Path]] = None) -> Optional[Path]:
    """Load the first existing ``.env`` (project root, then cwd) without overriding set vars."""
    if candidates is None:
        candidates = [Path(__file__).resolve().parents[1] / ".env", Path.cwd() / ".env"]
    for env_path in candidates:
        if env_path.is_file():
            load_dotenv(dotenv_path=str(env_path), override=False)
            return env_path
    return None


def _env_number(name: str, default: str, cast: Callable[[str], Any]) -> Any:
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"config_ignored | {name}={raw!r} is not a number; using {default}")
        return cast(default)


@lru_cache(maxsize=8)
def get_openai_chat(model: Optional[str] = None, temperature: Optional[float] = None) -> Optional[ChatOpenAI]:
    """Cached ChatOpenAI client configured from the environment.

    Reads OPENAI_API_KEY (required), OPENAI_MODEL (default gpt-4o-mini),
    OPENAI_TEMPERATURE and OPENAI_MAX_TOKENS.
    """
    load_env()
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.error("OPENAI_API_KEY not set; cannot initialize OpenAI chat client")
        return None
    settings: Dict[str, Any] = {
        "model": model or os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        "temperature": temperature if temperature is not None else _env_number("OPENAI_TEMPERATURE", "1", float),
        # structured replies carry a scene and a memory list on top of the line itself
        "max_tokens": _env_number("OPENAI_MAX_TOKENS", "600", int),
        "api_key": api_key,
    }
    logger.debug(f"chat_client_init | model={settings['model']} temperature={settings['temperature']}")
    return ChatOpenAI(**settings)


def _strip_fences(s: str) -> str:
    s = s.strip()
    if s.startswith("```"):
        # remove code fences and optional json hint
        lines = [ln for ln in s.splitlines() if not ln.strip().startswith("```")]
        return "\n".join(lines).strip()
    return s


def parse_json(s: str) -> Any:
    s = _strip_fences(s)
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        # try to extract the outermost {...} or [...]
        for open_ch, close_ch in (("{", "}"), ("[", "]")):
            start = s.find(open_ch)
            end = s.rfind(close_ch)
            if start != -1 and end > start:
                try:
                    return json.loads(s[start : end + 1])
                except json.JSONDecodeError:
                    continue
        raise ValueError(f"Failed to parse JSON from model output: {s[:120]!r}")


class ContentService:
    """Generative content service: ``generate_json(prompt, contract)`` -> parsed JSON.

    The contract is a JSON schema; it is sent alongside the prompt and the reply
    is parsed leniently. Callers validate and coerce the result themselves.
    """

    def __init__(self, chat: Optional[ChatOpenAI] = None, retries: int = 1) -> None:
        self.chat = chat if chat is not None else get_openai_chat()
        if self.chat is None:
            raise ContentServiceError(
                "chat model not initialized; set OPENAI_API_KEY (and optionally OPENAI_MODEL)"
            )
        self.retries = max(0, int(retries))

    def _messages(self, prompt: str, contract: Dict[str, Any], nudge: bool = False) -> list:
        blocks = [
            prompt,
            f"OUTPUT_CONTRACT:\n{json.dumps(contract, ensure_ascii=False)}",
        ]
        if nudge:
            blocks.append("Your previous reply was empty or not valid JSON. Reply with JSON only.")
        return [SystemMessage(content=_SYSTEM_PROMPT), HumanMessage(content="\n\n".join(blocks))]

    async def generate_json(self, prompt: str, contract: Dict[str, Any]) -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            t0 = time.perf_counter()
            try:
                result = await self.chat.ainvoke(self._messages(prompt, contract, nudge=attempt > 0))
            except Exception as e:
                raise ContentServiceError(f"chat model call failed: {e}") from e
            dt = time.perf_counter() - t0
            text = (result.content or "").strip() if isinstance(result.content, str) else ""
            logger.info(f"llm_call | attempt={attempt + 1} dt={dt:.2f}s chars={len(text)}")
            if not text:
                last_error = ContentServiceError("empty model output")
                continue
            try:
                return parse_json(text)
            except ValueError as e:
                logger.warning(f"llm_parse_failed | attempt={attempt + 1} | {e}")
                last_error = e
        raise ContentServiceError(f"no usable model output after {self.retries + 1} attempts: {last_error}")


def create_content_service(model: Optional[str] = None) -> Optional[ContentService]:
    """Build a ContentService from env config, or None when no API key is set."""
    chat = get_openai_chat(model=model)
    if chat is None:
        logger.warning("content_service_disabled | running with deterministic fallbacks")
        return None
    return ContentService(chat)
