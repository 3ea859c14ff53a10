# feedpilot/text_extraction.py
from __future__ import annotations

import re

from bs4 import BeautifulSoup

_WS_RE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def html_to_text(html: str) -> str:
    """
    Feed entry HTML -> readable plain text. Scripts and styles are dropped and
    block elements become line breaks.
    """
    if not html:
        return ""
    if "<" not in html:
        return html.strip()

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "iframe"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")

    text = soup.get_text(separator="\n")
    lines = [_WS_RE.sub(" ", line).strip() for line in text.splitlines()]
    text = "\n".join(lines)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()
