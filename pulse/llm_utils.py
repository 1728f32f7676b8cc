from __future__ import annotations

import ast
import json

from pulse.constants import RERANKER_TEMPERATURE
from pulse.logging_config import get_logger

logger = get_logger(__name__)


def build_messages(system: str | None, user: str) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": user})
    return messages


def build_payload(
    model: str,
    system: str | None,
    user: str,
    config: dict[str, object] | None = None,
    json_mode: bool = False,
) -> dict[str, object]:
    payload: dict[str, object] = {
        "model": model,
        "messages": build_messages(system, user),
        "temperature": config.get("temperature", RERANKER_TEMPERATURE)
        if config
        else RERANKER_TEMPERATURE,
    }

    if config:
        max_tokens = config.get("max_tokens")
        if isinstance(max_tokens, (int, float)) and max_tokens > 0:
            payload["max_tokens"] = int(max_tokens)

    if json_mode:
        payload["response_format"] = {"type": "json_object"}

    return payload


def _strip_code_fence(src: str) -> str:
    cleaned = src.strip()
    if not cleaned.startswith("```"):
        return cleaned
    lines = cleaned.splitlines()
    if lines and lines[0].strip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def _extract_json_object(src: str) -> str | None:
    start = src.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(src)):
        ch = src[idx]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return src[start : idx + 1]
    return None


def safe_json_loads(text: str | None) -> dict[str, object]:
    """Parse a model reply into a dict, tolerating code fences and chatter."""
    if not text:
        return {}

    clean_text = _strip_code_fence(text)
    candidates = [clean_text]
    extracted = _extract_json_object(clean_text)
    if extracted and extracted not in candidates:
        candidates.append(extracted)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError as e:
            logger.debug("json_decode_failed", error=str(e))
        try:
            parsed = ast.literal_eval(candidate)
            if isinstance(parsed, dict):
                return {str(k): v for k, v in parsed.items()}
        except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
            continue
    return {}
