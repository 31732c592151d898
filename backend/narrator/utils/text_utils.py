"""
Text utilities for narration output.

Cleans vision descriptions, compiles them into timestamped and flowing
text, and prepares text for speech synthesis (normalization and
pre-chunking below the provider's input limit).
"""

import logging
import re

logger = logging.getLogger(__name__)

# Speech providers reject ~3000+ chars per request
SPEECH_CHUNK_CHARS = 2500

# Filler phrases vision models tend to open with
_FILLER_RE = re.compile(
    r"\b(the scene shows|we can see|there is|there are|in this scene|"
    r"this video shows|this image shows|appears to be|seems to|looks like)\b",
    re.IGNORECASE,
)

_CONNECTORS = [
    "Next,", "Then,", "Subsequently,", "Following this,",
    "Meanwhile,", "At this point,", "Continuing,", "Later,",
]

_SPEECH_REPLACEMENTS = [
    (re.compile(r"\bU\.S\.A?\.?(?=\s|$)", re.IGNORECASE), "United States"),
    (re.compile(r"\bUK\b"), "United Kingdom"),
    (re.compile(r"\be\.g\.", re.IGNORECASE), "for example"),
    (re.compile(r"\bi\.e\.", re.IGNORECASE), "that is"),
    (re.compile(r"\betc\.", re.IGNORECASE), "etcetera"),
]


def clean_description(description: str) -> str:
    """Normalize one vision description.

    Removes filler phrases and markdown emphasis, collapses whitespace,
    capitalizes the first letter and ensures ending punctuation.

    Args:
        description: Raw provider text

    Returns:
        Cleaned sentence(s), or "" for blank input
    """
    text = description.strip().replace("**", "").replace("__", "")
    text = _FILLER_RE.sub("", text)
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"^\s*[,;:]\s*", "", text)
    text = re.sub(r"\s*[,;:]\s*$", "", text).strip()
    if not text:
        return ""
    text = text[0].upper() + text[1:]
    if text[-1] not in ".!?":
        text += "."
    return text


def compile_clean_text(descriptions: list[str]) -> str:
    """Join descriptions into a flowing narrative with scene connectors.

    Args:
        descriptions: Cleaned descriptions in timeline order

    Returns:
        Narrative text without timestamps
    """
    total = len(descriptions)
    parts: list[str] = []
    for i, description in enumerate(descriptions):
        if i == 0:
            parts.append(description)
        elif i == total - 1:
            parts.append(f"Finally, {_lower_first(description)}")
        elif i == total // 2:
            parts.append(f"Midway through, {_lower_first(description)}")
        else:
            parts.append(f"{_CONNECTORS[i % len(_CONNECTORS)]} {_lower_first(description)}")
    return " ".join(parts)


def prepare_for_speech(text: str) -> str:
    """Normalize text for speech synthesis.

    Collapses whitespace, expands common abbreviations and strips
    bracket characters the synthesizer would read out.
    """
    text = re.sub(r"\s+", " ", text)
    for pattern, replacement in _SPEECH_REPLACEMENTS:
        text = pattern.sub(replacement, text)
    text = re.sub(r"[\[\]{}<>]", "", text)
    return text.strip()


def split_for_speech(text: str, max_chars: int = SPEECH_CHUNK_CHARS) -> list[str]:
    """Split text into chunks no longer than max_chars.

    Cuts on sentence boundaries; a single sentence longer than the limit
    is split on word boundaries, and a single word longer than the limit
    is hard-cut.

    Args:
        text: Prepared narration text
        max_chars: Maximum chunk length

    Returns:
        Non-empty chunks, in order
    """
    text = text.strip()
    if not text:
        return []
    if len(text) <= max_chars:
        return [text]

    sentences = re.split(r"(?<=[.!?])\s+", text)
    chunks: list[str] = []
    current = ""

    for sentence in sentences:
        for piece in _split_long(sentence, max_chars):
            candidate = f"{current} {piece}" if current else piece
            if len(candidate) > max_chars and current:
                chunks.append(current)
                current = piece
            else:
                current = candidate

    if current:
        chunks.append(current)

    logger.debug(
        f"Split text ({len(text)} chars) into {len(chunks)} speech chunks: "
        f"{[len(c) for c in chunks]}"
    )
    return chunks


def _split_long(sentence: str, max_chars: int) -> list[str]:
    """Break a sentence longer than max_chars on word boundaries."""
    if len(sentence) <= max_chars:
        return [sentence]

    pieces: list[str] = []
    current = ""
    for word in sentence.split():
        while len(word) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        candidate = f"{current} {word}" if current else word
        if len(candidate) > max_chars:
            pieces.append(current)
            current = word
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def _lower_first(text: str) -> str:
    # Acronyms (NASA, TV) and the pronoun "I" keep their case
    first = text.split(" ", 1)[0]
    if not text or first == "I" or first.startswith("I'"):
        return text
    if len(first) > 1 and first.isupper():
        return text
    return text[0].lower() + text[1:]
