"""Normalize model-written and citizen-written text into safe plain text."""
import html
import re

import bleach
from markdown_it import MarkdownIt


# HTML disabled so raw tags in model output are escaped, not rendered
_md = MarkdownIt("commonmark", {"html": False}).enable(["strikethrough"])


def _normalize_whitespace(text: str) -> str:
    cleaned = re.sub(r"[\r\t]+", " ", text or "")
    cleaned = re.sub(r" +", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def markdown_to_plaintext(md_text: str) -> str:
    """Render markdown, then strip every tag, keeping paragraph breaks."""
    rendered = _md.render(_normalize_whitespace(md_text))
    rendered = re.sub(r"</(p|li|h[1-6]|blockquote|pre)>", "\n", rendered)
    text_only = bleach.clean(rendered, tags=[], attributes={}, strip=True)
    # bleach leaves entities escaped; plain text wants the characters back
    text_only = html.unescape(text_only)
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text_only.splitlines()]
    return "\n".join(line for line in lines if line)


def clean_user_text(text: str | None, max_length: int | None = None) -> str:
    """Strip markup from free text a citizen typed, preserving line breaks."""
    # escape every "&" first so entities the citizen typed survive as typed
    cleaned = bleach.clean((text or "").replace("&", "&amp;"), tags=[], attributes={}, strip=True)
    cleaned = html.unescape(cleaned)
    cleaned = _normalize_whitespace(cleaned)
    if max_length is not None:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned
