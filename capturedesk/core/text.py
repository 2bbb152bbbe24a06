"""Small text helpers shared by the transformer and the newsletter."""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# A sentence ends at . ! or ? followed by whitespace or the end of the text,
# so "Promise.all" or "v1.2" stay inside their sentence.
_FIRST_SENTENCE = re.compile(r"^.+?[.!?](?=\s|$)", re.DOTALL)


def slugify(text: str, *, max_length: int | None = None, default: str = "untitled") -> str:
    """Lowercase, collapse non-alphanumeric runs to one hyphen, trim hyphens."""
    slug = _NON_ALNUM.sub("-", text.lower().strip()).strip("-")
    if max_length is not None:
        slug = slug[:max_length]
    return slug or default


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    """Cut text to at most ``max_length`` characters, suffix included."""
    text = text.strip()
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)].rstrip() + suffix


def first_sentence(text: str) -> str:
    """Text up to and including the first sentence terminator.

    Returns the whole (stripped) text when it has no terminator.
    """
    text = text.strip()
    match = _FIRST_SENTENCE.match(text)
    return match.group(0).strip() if match else text


def strip_markdown(text: str) -> str:
    """Flatten markdown to a single line of plain text.

    Code fences, images and links are dropped, inline code keeps its content,
    heading/quote/list markers are removed and whitespace is collapsed.
    """
    text = re.sub(r"```[\s\S]*?```", " ", text)
    text = re.sub(r"!\[[^\]]*\]\([^)]+\)", " ", text)
    text = re.sub(r"\[[^\]]+\]\([^)]+\)", " ", text)
    text = re.sub(r"`([^`]+)`", r"\1", text)
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^>\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r"^\s*[-*+]\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^\s*\d+\.\s+", "", text, flags=re.MULTILINE)
    return re.sub(r"\s+", " ", text).strip()


def summary_sentence(markdown: str, max_length: int = 180) -> str:
    """First sentence of the plain-text rendering, or its first ``max_length`` chars."""
    clean = strip_markdown(markdown)
    if not clean:
        return ""
    match = re.search(r"[^.!?]+[.!?]", clean)
    if match:
        return match.group(0).strip()
    return clean[:max_length]
