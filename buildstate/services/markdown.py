"""Minimal Markdown to HTML rendering for blog bodies (headings, emphasis, lists, links, paragraphs)."""
import html
import re

_HEADING = re.compile(r"^(#{1,6})\s+(.*)$")
_ORDERED = re.compile(r"^\s*\d+\.\s+(.*)$")
_BULLET = re.compile(r"^\s*[-*+]\s+(.*)$")
_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+|/[^\s)]*)\)")


def _link(match):
    # href is already entity-escaped apart from quotes
    href = match.group(2).replace('"', "&quot;")
    return f'<a href="{href}">{match.group(1)}</a>'


def _inline(text):
    text = html.escape(text, quote=False)
    text = re.sub(r"`([^`]+)`", r"<code>\1</code>", text)
    text = re.sub(r"\*\*\*(.+?)\*\*\*", r"<strong><em>\1</em></strong>", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", text)
    text = re.sub(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])", r"<em>\1</em>", text)
    return _LINK.sub(_link, text)


def strip_code_fence(text):
    text = text.strip()
    text = re.sub(r"^```(?:markdown|md)?\s*\n", "", text, flags=re.IGNORECASE)
    return re.sub(r"\n```\s*$", "", text)


def to_html(markdown):
    blocks = []
    paragraph = []
    list_tag = None
    items = []

    def flush_paragraph():
        if paragraph:
            blocks.append(f"<p>{_inline(' '.join(paragraph))}</p>")
            paragraph.clear()

    def flush_list():
        nonlocal list_tag
        if list_tag:
            blocks.append(f"<{list_tag}>" + "".join(f"<li>{_inline(i)}</li>" for i in items) + f"</{list_tag}>")
            items.clear()
            list_tag = None

    for raw in (markdown or "").splitlines():
        line = raw.rstrip()
        if not line.strip():
            flush_paragraph()
            flush_list()
            continue

        heading = _HEADING.match(line)
        ordered = _ORDERED.match(line)
        bullet = _BULLET.match(line)
        if heading:
            flush_paragraph()
            flush_list()
            level = len(heading.group(1))
            blocks.append(f"<h{level}>{_inline(heading.group(2).strip())}</h{level}>")
        elif ordered or bullet:
            flush_paragraph()
            tag = "ol" if ordered else "ul"
            if list_tag != tag:
                flush_list()
                list_tag = tag
            items.append((ordered or bullet).group(1).strip())
        else:
            flush_list()
            paragraph.append(line.strip())

    flush_paragraph()
    flush_list()
    return "\n".join(blocks)


def reading_time(markdown, words_per_minute=200):
    words = len(re.findall(r"\w+", markdown or ""))
    return max(1, round(words / words_per_minute))


def excerpt(markdown, length=200):
    text = re.sub(r"[#*_`>\[\]]|\(https?://[^)]*\)", "", markdown or "")
    text = " ".join(text.split())
    return text if len(text) <= length else text[: length - 3].rsplit(" ", 1)[0] + "..."
