"""
Text extraction from Lark message payloads.

Message content arrives either as a JSON-encoded string or an already
parsed object, holding plain ``{"text": ...}`` or rich ``post`` content
(``{"title": ..., "content": [[{"tag": "text", "text": ...}, ...], ...]}``).

Version: 1.0.0
"""
import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# Covers "@alice" as well as Lark's "@_user_1" placeholders
MENTION_PATTERN = re.compile(r"@\w+")


def strip_mentions(text: str) -> str:
    return MENTION_PATTERN.sub("", text).strip()


def extract_text_from_rich_content(content: Any) -> str:
    """
    Flatten rich post content into one line of text.

    ``text`` elements within a paragraph are concatenated and paragraphs
    are separated by a single space. Anything else yields ``""``.
    """
    if not isinstance(content, list):
        return ""

    parts = []
    for paragraph in content:
        if not isinstance(paragraph, list):
            continue
        for element in paragraph:
            if isinstance(element, dict) and element.get("tag") == "text" and element.get("text"):
                parts.append(str(element["text"]))
        parts.append(" ")

    return strip_mentions("".join(parts).strip())


def _parse_content(content: Any) -> Any:
    if isinstance(content, (bytes, bytearray)):
        content = content.decode("utf-8", errors="replace")

    if isinstance(content, str):
        try:
            parsed = json.loads(content)
        except ValueError:
            logger.debug("Message content is not JSON, using it as plain text")
            return {"text": content}

        # "2", "true" and "null" parse as JSON scalars but were typed as text
        if isinstance(parsed, (dict, list, str)):
            return parsed
        return {"text": content}

    return content


def extract_message_text(content: Any) -> str:
    """
    Extract the user's text from a message content payload.

    Args:
        content: JSON string or parsed object from ``event.message.content``

    Returns:
        Trimmed text with mentions removed, or ``""`` when nothing usable
        could be extracted
    """
    if not content:
        return ""

    try:
        parsed = _parse_content(content)

        if isinstance(parsed, str):
            return strip_mentions(parsed)

        if not isinstance(parsed, dict):
            return ""

        text = parsed.get("text")
        if isinstance(text, str) and text:
            return strip_mentions(text)

        if parsed.get("content"):
            return extract_text_from_rich_content(parsed["content"])

        # Locale-wrapped posts: {"en_us": {"title": ..., "content": [...]}}
        for value in parsed.values():
            if isinstance(value, dict) and value.get("content"):
                return extract_text_from_rich_content(value["content"])

        return ""

    except (TypeError, AttributeError) as e:
        logger.warning(f"Could not extract message text: {e}")
        return ""


__all__ = [
    'MENTION_PATTERN',
    'strip_mentions',
    'extract_text_from_rich_content',
    'extract_message_text',
]
