"""Unwrapping and tolerant parsing of generator text payloads."""

from __future__ import annotations

import json
import re
from typing import Any

from pressroom.collaborators.types import ArticleMetadata
from pressroom.infrastructure.logger import logger, truncate_payload

DEFAULT_CATEGORY = "Uncategorized"

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?([\s\S]*?)\s*```")


def strip_fencing(raw: str) -> str:
    """Remove markdown code fences and surrounding prose around a JSON payload."""
    text = raw.strip()
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()

    if text[:1] in ("{", "["):
        return text

    # "Here is the metadata: {...} Hope this helps"
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    end = max(text.rfind("}"), text.rfind("]"))
    if end <= start:
        return text
    return text[start : end + 1]


def _load(raw: str) -> Any:
    return json.loads(strip_fencing(raw))


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def parse_metadata(raw: str, title: str) -> tuple[ArticleMetadata, bool]:
    """Parse a metadata payload.

    Returns the metadata and whether the payload was understood. An unparsable
    payload yields conservative defaults and is logged verbatim.
    """
    try:
        data = _load(raw)
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
    except (ValueError, TypeError) as err:
        logger.warning("Unparsable metadata payload, using defaults", error=str(err), raw=truncate_payload(raw))
        return (
            ArticleMetadata(
                categories=[DEFAULT_CATEGORY],
                tags=[],
                seo_description=title[:160],
                seo_keywords=[],
            ),
            False,
        )

    seo_description = data.get("seoDescription", data.get("seo_description", ""))
    return (
        ArticleMetadata(
            categories=_string_list(data.get("categories")),
            tags=_string_list(data.get("tags")),
            seo_description=seo_description if isinstance(seo_description, str) else "",
            seo_keywords=_string_list(data.get("seoKeywords", data.get("seo_keywords"))),
        ),
        True,
    )


def parse_image_phrases(raw: str) -> list[str] | None:
    """Parse a JSON array of search phrases. None when the payload is unusable."""
    try:
        data = _load(raw)
    except (ValueError, TypeError) as err:
        logger.warning("Unparsable image phrase payload", error=str(err), raw=truncate_payload(raw))
        return None
    if isinstance(data, dict):
        data = data.get("phrases")
    phrases = _string_list(data) if isinstance(data, list) else []
    return phrases or None
