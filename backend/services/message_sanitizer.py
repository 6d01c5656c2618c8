"""
Inbound chat message sanitization.

Runs before any message reaches a provider: keeps the recent history,
caps content length and strips role-spoofing and markup.
"""

import re
import unicodedata
from typing import Any, Dict, List

from config import MAX_HISTORY_MESSAGES, MAX_MESSAGE_CONTENT_LENGTH

_ZERO_WIDTH = re.compile(r"[\u200b-\u200f\u2028-\u202f\ufeff]")
_ROLE_PREFIX = re.compile(r"^\s*(system|assistant|developer|user|human|ai)\s*:", re.IGNORECASE | re.MULTILINE)
_ROLE_LINE = re.compile(
    r"^\s*role\s*:\s*(system|assistant|developer|user|human|ai)\s*$", re.IGNORECASE | re.MULTILINE
)
_DELIMITER = re.compile(r"\b(begin|end)\s+(system|developer|assistant|prompt)\b", re.IGNORECASE)
_ANGLE_ROLE = re.compile(r"<<\s*(system|developer|assistant|user)\s*>>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")


def sanitize_message_content(content: str) -> str:
    text = unicodedata.normalize("NFKC", content)
    text = _ZERO_WIDTH.sub("", text)
    text = _ROLE_PREFIX.sub("", text)
    text = _ROLE_LINE.sub("", text)
    text = _DELIMITER.sub("", text)
    text = _ANGLE_ROLE.sub("", text)
    text = _HTML_TAG.sub("", text)
    return _CODE_BLOCK.sub("[code block]", text)


def sanitize_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Keep the last 12 messages, normalize roles and clean content."""
    sanitized = []
    for message in messages[-MAX_HISTORY_MESSAGES:]:
        content = message.get("content") or ""
        if not isinstance(content, str):
            content = str(content)
        sanitized.append({
            "role": "assistant" if message.get("role") == "assistant" else "user",
            "content": sanitize_message_content(content[:MAX_MESSAGE_CONTENT_LENGTH]),
        })
    return sanitized
