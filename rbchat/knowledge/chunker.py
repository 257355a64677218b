"""Split extracted text into bounded chunks for embedding."""

import re

MAX_CHUNK_CHARS = 2000

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def _split_long(paragraph: str, limit: int) -> list[str]:
    """Cut an oversized paragraph, preferring whitespace boundaries."""
    pieces: list[str] = []
    rest = paragraph
    while len(rest) > limit:
        cut = rest.rfind(" ", 0, limit + 1)
        if cut <= 0:
            cut = limit
        pieces.append(rest[:cut].rstrip())
        rest = rest[cut:].lstrip()
    if rest:
        pieces.append(rest)
    return pieces


def chunk_text(text: str, limit: int = MAX_CHUNK_CHARS) -> list[str]:
    """Pack paragraphs into chunks of at most *limit* characters.

    Paragraphs are kept whole where they fit and joined with a blank line.
    Returns an empty list for blank input.
    """
    chunks: list[str] = []
    current = ""
    for raw in _PARAGRAPH_BREAK.split(text):
        paragraph = raw.strip()
        if not paragraph:
            continue
        for piece in _split_long(paragraph, limit):
            if not current:
                current = piece
            elif len(current) + 2 + len(piece) <= limit:
                current = f"{current}\n\n{piece}"
            else:
                chunks.append(current)
                current = piece
    if current:
        chunks.append(current)
    return chunks
