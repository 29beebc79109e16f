"""Review summary extraction.

AI tools post a mix of markdown and raw HTML (collapsible sections, tables,
bold headers). The body is first normalized toward plain markdown, then a
short summary is pulled from the first recognizable section.
"""

import re

MAX_SUMMARY_LENGTH = 500

_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_LINK_RE = re.compile(r"""<a\s+href=['"]([^'"]+)['"][^>]*>(.*?)</a>""", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_STRONG_RE = re.compile(r"<(?:strong|b)>(.*?)</(?:strong|b)>", re.IGNORECASE | re.DOTALL)
_EM_RE = re.compile(r"<(?:em|i)>(.*?)</(?:em|i)>", re.IGNORECASE | re.DOTALL)
_CODE_RE = re.compile(r"<code>(.*?)</code>", re.IGNORECASE | re.DOTALL)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_DETAILS_RE = re.compile(r"<details>\s*<summary>(.*?)</summary>\s*(.*?)\s*</details>", re.IGNORECASE | re.DOTALL)
_SUMMARY_TAG_RE = re.compile(r"</?summary>", re.IGNORECASE)
_CELL_RE = re.compile(r"<t[dh][^>]*>(.*?)</t[dh]>", re.IGNORECASE | re.DOTALL)
_TABLE_TAG_RE = re.compile(r"</?(?:table|tr|thead|tbody|tfoot)[^>]*>", re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n{3,}")

ENTITIES = {
    "&nbsp;": " ",
    "&lt;": "<",
    "&gt;": ">",
    "&amp;": "&",
    "&quot;": '"',
}

_QODO_EFFORT_RE = re.compile(r"\*\*Estimated effort[^*]*\*\*[:\s]*(\d+)", re.IGNORECASE)
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_WALKTHROUGH_RE = re.compile(r"Walkthrough\**\s*\n+(.+?)(?:\n\n|$)", re.IGNORECASE | re.DOTALL)
_POTENTIAL_ISSUE_RE = re.compile(r"Potential issue.*?\*\*([^*]+)\*\*", re.IGNORECASE | re.DOTALL)
_LABEL_RE = re.compile(r"^[#>*\s]*(summary|overview)\*{0,2}[ \t]*(?::\*{0,2}[ \t]*(.*))?$", re.IGNORECASE | re.MULTILINE)
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")

# Bold titles in a Qodo guide that are headers, not focus areas
QODO_SKIP_TITLES = ("estimated effort", "security", "ticket", "recommended focus")
QODO_MAX_PARTS = 4


def _link(match: re.Match) -> str:
    url, text = match.group(1), _TAG_RE.sub("", match.group(2)).strip()
    return f"[{text}]({url})" if text else ""


def _details(match: re.Match) -> str:
    title = _TAG_RE.sub("", match.group(1)).strip()
    content = match.group(2).strip()
    if not title:
        return content
    return f"\n**{title}**\n{content}\n"


def html_to_markdown(body: str) -> str:
    """Convert the HTML found in AI review comments to markdown."""
    body = body.replace("\\n", "\n").replace("\\r", "")
    body = _COMMENT_RE.sub("", body)

    body = _LINK_RE.sub(_link, body)
    body = _STRONG_RE.sub(r"**\1**", body)
    body = _EM_RE.sub(r"*\1*", body)
    body = _CODE_RE.sub(r"`\1`", body)
    body = _BR_RE.sub("\n", body)

    body = _DETAILS_RE.sub(_details, body)
    body = _SUMMARY_TAG_RE.sub("", body)

    body = _CELL_RE.sub(lambda m: m.group(1).strip() + "\n", body)
    body = _TABLE_TAG_RE.sub("\n", body)
    body = _TAG_RE.sub("", body)

    for entity, char in ENTITIES.items():
        body = body.replace(entity, char)

    body = _BLANK_LINES_RE.sub("\n\n", body)

    lines = []
    prev_empty = False
    for line in body.split("\n"):
        line = line.rstrip(" \t")
        if not line:
            if not prev_empty:
                lines.append("")
            prev_empty = True
        else:
            lines.append(line)
            prev_empty = False

    return "\n".join(lines).strip()


def _qodo_parts(text: str) -> list[str]:
    parts = []
    if match := _QODO_EFFORT_RE.search(text):
        parts.append(f"Effort: {match.group(1)}/5")

    if "No security concerns" in text:
        parts.append("Security: OK")
    elif "security" in text:
        parts.append("Security: Review needed")

    for match in _BOLD_RE.finditer(text):
        if len(parts) >= QODO_MAX_PARTS:
            break
        title = match.group(1).strip()
        lowered = title.lower()
        if not title or len(title) >= 100 or any(skip in lowered for skip in QODO_SKIP_TITLES):
            continue
        parts.append(title)
    return parts


def _labeled_section(text: str) -> str:
    """Text after a Summary/Overview label, up to the first blank line."""
    match = _LABEL_RE.search(text)
    if not match:
        return ""
    inline = (match.group(2) or "").strip()
    if inline:
        return inline
    rest = text[match.end():].lstrip("\n")
    return _PARAGRAPH_SPLIT_RE.split(rest, maxsplit=1)[0].strip()


def _first_paragraph(text: str) -> str:
    for paragraph in _PARAGRAPH_SPLIT_RE.split(text):
        paragraph = paragraph.strip()
        if (
            30 < len(paragraph) < 500
            and not paragraph.startswith(("#", "http", "["))
            and "```" not in paragraph
        ):
            return paragraph
    return ""


def truncate_summary(summary: str, limit: int = MAX_SUMMARY_LENGTH) -> str:
    """Cut at a sentence, then at a part separator, else hard-truncate."""
    if len(summary) <= limit:
        return summary
    head = summary[:limit]
    idx = head.rfind(". ")
    if idx > 200:
        return head[:idx + 1]
    idx = head.rfind(" | ")
    if idx > 100:
        return head[:idx]
    return summary[:limit - 3] + "..."


def extract_summary(body: str) -> str:
    """Derive a short (<= 500 char) summary from a review body.

    Tries, in order: Qodo guide highlights, a CodeRabbit walkthrough, a
    Summary/Overview section, the first prose paragraph. A "Potential issue"
    headline is appended when present. Falls back to the start of the body.
    """
    cleaned = html_to_markdown(body)
    parts: list[str] = []

    if "PR Reviewer Guide" in cleaned or "Estimated effort" in cleaned:
        parts.extend(_qodo_parts(cleaned))

    if not parts and "Walkthrough" in cleaned:
        if match := _WALKTHROUGH_RE.search(cleaned):
            parts.append(match.group(1).strip())

    if "Potential issue" in cleaned:
        if match := _POTENTIAL_ISSUE_RE.search(cleaned):
            parts.append(f"Issue: {match.group(1).strip()}")

    if not parts:
        if section := _labeled_section(cleaned):
            parts.append(section)

    if not parts:
        if paragraph := _first_paragraph(cleaned):
            parts.append(paragraph)

    summary = " | ".join(parts)
    if not summary:
        if len(cleaned) <= MAX_SUMMARY_LENGTH:
            return cleaned
        return cleaned[:MAX_SUMMARY_LENGTH - 3] + "..."

    return truncate_summary(summary).strip()
