"""
Common utility functions and helpers.
"""
import re


_CODE_FENCE_RE = re.compile(r"```[^\n`]*\n([\s\S]*?)```")
_FENCE_LINE_RE = re.compile(r"^\s*```[^`]*$")
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_HEADER_RE = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$")
_BOLD_STAR_RE = re.compile(r"\*\*([^*\n]+?)\*\*")
_BOLD_UNDERSCORE_RE = re.compile(r"__([^_\n]+?)__")
_ITALIC_STAR_RE = re.compile(r"(?<!\*)\*([^*\n]+?)\*(?!\*)")
_ITALIC_UNDERSCORE_RE = re.compile(r"(?<!\w)_([^_\n]+?)_(?!\w)")
_BULLET_RE = re.compile(r"^(\s*)[*+]\s+")
_HRULE_RE = re.compile(r"^\s*(?:-{3,}|\*{3,}|_{3,})\s*$")
_BLOCKQUOTE_RE = re.compile(r"^\s*>\s?")


def strip_markdown_line(line: str) -> str:
    """
    Convert one line of model output from markdown to plain text.

    Headers, bold/italic markers, inline code and links are unwrapped,
    ``*``/``+`` bullets become ``-`` bullets, fence lines and horizontal
    rules become empty.  Numbered lists are kept as-is.

    Args:
        line: A single line (no newline)

    Returns:
        The stripped plain-text line
    """
    if _FENCE_LINE_RE.match(line) or _HRULE_RE.match(line):
        return ""

    line = _INLINE_CODE_RE.sub(r"\1", line)
    line = _LINK_RE.sub(r"\1", line)
    line = _HEADER_RE.sub(r"\1", line)
    line = _BLOCKQUOTE_RE.sub("", line)
    line = _BULLET_RE.sub(r"\1- ", line)
    line = _BOLD_STAR_RE.sub(r"\1", line)
    line = _BOLD_UNDERSCORE_RE.sub(r"\1", line)
    line = _ITALIC_STAR_RE.sub(r"\1", line)
    line = _ITALIC_UNDERSCORE_RE.sub(r"\1", line)
    # Orphaned emphasis markers
    line = line.replace("*", "")
    return line.strip()


def strip_markdown(text: str) -> str:
    """
    Convert model output that slipped into markdown back to plain text.

    Args:
        text: Raw model output

    Returns:
        Plain text with normalized whitespace
    """
    if not text:
        return ""

    content = _CODE_FENCE_RE.sub(lambda m: m.group(1).strip("\n"), text)
    lines = [strip_markdown_line(line) for line in content.replace("\r\n", "\n").split("\n")]
    return normalize_whitespace("\n".join(lines))


def normalize_whitespace(text: str) -> str:
    """
    Trim every line, collapse runs of blank lines to one, strip the ends.

    Args:
        text: Text to clean

    Returns:
        Cleaned text
    """
    lines = [line.strip() for line in text.replace("\r\n", "\n").split("\n")]
    content = "\n".join(lines)
    content = re.sub(r"\n{3,}", "\n\n", content)
    return content.strip()


def truncate_text(text: str, max_length: int = 300, suffix: str = "...") -> str:
    """
    Keep the first *max_length* characters and append *suffix*.

    Args:
        text: Text to truncate
        max_length: Number of characters kept
        suffix: Suffix to add if truncated

    Returns:
        Truncated text (unchanged when already short enough)
    """
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is zero.

    Args:
        numerator: Numerator
        denominator: Denominator
        default: Default value if division fails

    Returns:
        Result of division or default
    """
    return numerator / denominator if denominator != 0 else default
