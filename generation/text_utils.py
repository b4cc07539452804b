"""
HTML text helpers shared by synthesis, recovery and validation.

Generated documents are restricted HTML fragments (h1-h3, p, ul/ol/li,
table, strong/em, a). The helpers here are regex/stack based and never
require the fragment to be well formed.
"""

from __future__ import annotations

from difflib import SequenceMatcher
import html as html_lib
import re
from typing import List, Optional, Sequence, Tuple

from core import SectionHeading, parse_headings


BLOCK_TAGS = {
    "p", "ul", "ol", "li", "table", "thead", "tbody", "tfoot", "tr", "td", "th",
    "blockquote", "h1", "h2", "h3", "h4", "h5", "h6", "div", "section", "pre",
}
INLINE_TAGS = {"a", "strong", "em", "b", "i", "span", "code", "u", "small"}
TRACKED_TAGS = BLOCK_TAGS | INLINE_TAGS
VOID_TAGS = {"br", "hr", "img", "meta", "link", "input", "wbr"}

CLOSING_BLOCK_RE = re.compile(
    r"</(?:p|ul|ol|li|table|tr|td|th|blockquote|h[1-6]|div|section|pre)\s*>",
    re.IGNORECASE,
)
_TAG_TOKEN_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b[^<>]*?(/?)>")
_TOKEN_RE = re.compile(r"<[^<>]*>|[^<]+")
_SENTENCE_END_RE = re.compile(r"[.!?…](?:[\"'”»)\]]*)(?=\s|$)")
_TRAILING_PARTIAL_TAG_RE = re.compile(r"<[^<>]*$")
_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?|\n?\s*```\s*$")
_PAREN_HINT_RE = re.compile(r"[\(\[][^\)\]]*[\)\]]")
_NUMBERING_RE = re.compile(
    r"^\s*(?:"
    r"(?i:section|part|chapter|sekcja|część|rozdział)\s+(?:\d+|[IVXLC]+)[\.\):\-]?"
    r"|\d+(?:\.\d+)+[\.\):\-]?"
    r"|\d{1,3}[\.\):\-]"
    r"|[IVXLC]+[\.\):\-]"
    r")\s+"
)
_DIGITS_RE = re.compile(r"\d+")
_NON_WORD_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SECTION_SPLIT_RE = re.compile(r"(?=<h[1-3]\b)", re.IGNORECASE)


def plain_text(html: str) -> str:
    text = re.sub(r"<[^>]+>", " ", str(html or ""))
    text = html_lib.unescape(text)
    return re.sub(r"\s+", " ", text).strip()


def document_length(html: str) -> int:
    """Character count of the visible text of a fragment."""
    return len(plain_text(html))


def tail(text: str, chars: int) -> str:
    text = str(text or "")
    if chars <= 0:
        return ""
    return text[-chars:]


def strip_code_fences(text: str) -> str:
    """Drop a markdown fence the model sometimes wraps around HTML or JSON."""
    return _FENCE_RE.sub("", str(text or "")).strip()


def extract_headings(html: str) -> List[SectionHeading]:
    return parse_headings(html)


def normalize_heading(text: str) -> str:
    """Lowercased heading text without length hints, list numbering or punctuation."""
    value = html_lib.unescape(str(text or ""))
    value = _PAREN_HINT_RE.sub(" ", value)
    value = _NUMBERING_RE.sub("", value.strip())
    value = _NON_WORD_RE.sub(" ", value.lower())
    return re.sub(r"\s+", " ", value).strip()


def heading_similarity(planned: str, written: str) -> float:
    """
    Similarity of two headings in ``[0, 1]`` after normalisation.

    Headings that carry different numbers ("2024 trends", "2025 trends") never
    match; otherwise the score is the ``SequenceMatcher`` ratio.
    """
    a = normalize_heading(planned)
    b = normalize_heading(written)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if _DIGITS_RE.findall(a) != _DIGITS_RE.findall(b):
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def scoped_headings(headings: Sequence[SectionHeading]) -> List[Tuple[str, SectionHeading]]:
    """Pair every heading with the text of the ``<h2>`` it sits under (empty for h1/h2)."""
    scoped: List[Tuple[str, SectionHeading]] = []
    parent = ""
    for heading in headings:
        if heading.level <= 2:
            parent = heading.text if heading.level == 2 else ""
            scoped.append(("", heading))
        else:
            scoped.append((parent, heading))
    return scoped


def same_scope(a: str, b: str, threshold: float = 0.8) -> bool:
    # an unknown parent matches any parent
    if not a or not b:
        return True
    return heading_similarity(a, b) >= threshold


def missing_headings(
    planned: Sequence[SectionHeading],
    written: Sequence[SectionHeading],
    threshold: float = 0.8,
) -> List[SectionHeading]:
    """
    Planned headings with no written heading at or above ``threshold`` similarity.

    An ``<h3>`` only matches a written ``<h3>`` under a matching ``<h2>``, so a
    generic label repeated under several sections is tracked per section.
    """
    written_scoped = scoped_headings(written)
    missing = []
    for parent, heading in scoped_headings(planned):
        found = any(
            heading_similarity(heading.text, w.text) >= threshold
            and (heading.level < 3 or (w.level == 3 and same_scope(parent, w_parent, threshold)))
            for w_parent, w in written_scoped
        )
        if not found:
            missing.append(heading)
    return missing


def _open_tag_stack(html: str) -> List[str]:
    stack: List[str] = []
    for match in _TAG_TOKEN_RE.finditer(html):
        closing, name, self_closing = match.group(1), match.group(2).lower(), match.group(3)
        if name in VOID_TAGS or self_closing or name not in TRACKED_TAGS:
            continue
        if not closing:
            stack.append(name)
        elif name in stack:
            while stack:
                if stack.pop() == name:
                    break
    return stack


def close_open_blocks(html: str) -> str:
    """Remove a trailing partial tag and close every tag left open."""
    text = _TRAILING_PARTIAL_TAG_RE.sub("", str(html or "")).rstrip()
    stack = _open_tag_stack(text)
    if not stack:
        return text
    return text + "".join(f"</{name}>" for name in reversed(stack))


def ends_with_closed_block(html: str) -> bool:
    text = str(html or "").rstrip()
    if not text:
        return False
    last = None
    for last in CLOSING_BLOCK_RE.finditer(text):
        pass
    if last is None or last.end() != len(text):
        return False
    return not _open_tag_stack(text)


def ends_at_sentence(html: str) -> bool:
    """Visible text ends on sentence punctuation, or the last block is a list or table."""
    text = str(html or "").rstrip()
    if re.search(r"</(?:ul|ol|table)\s*>$", text, re.IGNORECASE):
        return True
    visible = plain_text(text)
    return bool(visible) and bool(re.search(r"[.!?…:][\"'”»)\]]*$", visible))


def looks_complete(html: str) -> bool:
    return ends_with_closed_block(html) and ends_at_sentence(html)


def ensure_closed_block(html: str) -> str:
    """Guarantee the fragment ends on a closed block element."""
    text = close_open_blocks(html)
    if not text:
        return ""
    if ends_with_closed_block(text):
        return text

    last_block_end = 0
    for match in CLOSING_BLOCK_RE.finditer(text):
        last_block_end = match.end()
    head, trailing = text[:last_block_end].rstrip(), text[last_block_end:].strip()
    if not plain_text(trailing):
        return head
    if not re.search(r"[.!?…]$", plain_text(trailing)):
        trailing += "."
    return f"{head}\n<p>{trailing}</p>" if head else f"<p>{trailing}</p>"


def _cut_points(html: str) -> List[int]:
    points: List[int] = []
    for token in _TOKEN_RE.finditer(html):
        value = token.group(0)
        if value.startswith("<"):
            if CLOSING_BLOCK_RE.fullmatch(value):
                points.append(token.end())
            continue
        for match in _SENTENCE_END_RE.finditer(value):
            points.append(token.start() + match.end())
    return points


def trim_to_last_sentence(html: str) -> str:
    """
    Cut after the last complete sentence or closed block, then re-close.

    Text that already ends cleanly is returned unchanged apart from
    trailing whitespace.
    """
    text = _TRAILING_PARTIAL_TAG_RE.sub("", str(html or "")).rstrip()
    if not text:
        return ""
    if looks_complete(text):
        return text

    points = _cut_points(text)
    if points:
        text = text[: points[-1]].rstrip()
        # a closed heading cannot end a section
        while True:
            stripped = re.sub(r"\s*<h[1-6]\b[^>]*>[^<]*</h[1-6]\s*>\s*$", "", text, flags=re.IGNORECASE)
            if stripped == text or not stripped:
                break
            text = stripped
    return ensure_closed_block(text)


def trim_chars(html: str, count: int) -> str:
    """Drop ``count`` trailing characters and cut back to a sentence boundary."""
    text = str(html or "").rstrip()
    if count > 0:
        text = text[: max(0, len(text) - count)]
    return trim_to_last_sentence(text)


def split_sections(html: str) -> List[Tuple[Optional[SectionHeading], str]]:
    """Split at h1-h3 boundaries; the leading chunk has no heading."""
    sections: List[Tuple[Optional[SectionHeading], str]] = []
    for chunk in _SECTION_SPLIT_RE.split(str(html or "")):
        if not chunk.strip():
            continue
        headings = parse_headings(chunk[:500]) if re.match(r"\s*<h[1-3]\b", chunk, re.IGNORECASE) else []
        sections.append((headings[0] if headings else None, chunk))
    return sections


def _blocks(html: str) -> List[str]:
    parts = re.split(r"(?<=>)\s*(?=<(?:p|ul|ol|table|h[1-6]|blockquote|div)\b)", html, flags=re.IGNORECASE)
    return [part for part in parts if part.strip()]


def drop_overlap(existing: str, continuation: str, window: int = 2000, min_overlap: int = 20) -> str:
    """Remove a continuation's leading text that repeats the end of ``existing``."""
    base = str(existing or "").rstrip()[-window:]
    text = str(continuation or "").lstrip()
    limit = min(len(base), len(text))
    for size in range(limit, min_overlap - 1, -1):
        if base.endswith(text[:size]):
            text = text[size:].lstrip()
            break

    seen = plain_text(base)
    blocks = _blocks(text)
    while blocks:
        visible = plain_text(blocks[0])
        if len(visible) >= 30 and visible in seen:
            blocks.pop(0)
            continue
        break
    return "\n".join(block.strip() for block in blocks) if blocks else ""


def count_links(html: str, url: str) -> int:
    pattern = re.compile(
        r"<a\s[^>]*href\s*=\s*([\"'])" + re.escape(url.rstrip("/")) + r"/?\1[^>]*>.*?</a\s*>",
        re.IGNORECASE | re.DOTALL,
    )
    return len(pattern.findall(str(html or "")))


def link_in_heading(html: str, url: str) -> bool:
    pattern = re.compile(
        r"<h[1-6]\b[^>]*>(?:(?!</h[1-6]).)*href\s*=\s*[\"']" + re.escape(url.rstrip("/")) + r"/?[\"']",
        re.IGNORECASE | re.DOTALL,
    )
    return bool(pattern.search(str(html or "")))
