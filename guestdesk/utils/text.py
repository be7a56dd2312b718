import re
from dataclasses import dataclass

# Sentence terminators, full-width and ASCII forms, followed by whitespace
_SENTENCE_END = re.compile(r"[。！？.!?]\s")
_CJK_CHAR = re.compile(r"[\u4e00-\u9fff]")
_NON_WORD = re.compile(r"[^a-z0-9\s]")


def _last_sentence_break(window: str, min_end: int) -> int | None:
    """Offset just past the last terminator+whitespace pair ending after min_end."""
    cut = None
    for m in _SENTENCE_END.finditer(window):
        if m.end() > min_end:
            cut = m.end()
    return cut


def chunk_text(text: str, target_size: int = 500, overlap: int = 50) -> list[str]:
    """Split text into overlapping segments that prefer to end on sentence boundaries.

    Text no longer than target_size is always one segment, the trimmed input
    (an empty string for blank input; callers reject empty documents first).
    """
    if overlap >= target_size:
        raise ValueError("overlap must be smaller than target_size")
    if len(text) <= target_size:
        return [text.strip()]

    chunks: list[str] = []
    n = len(text)
    start = 0
    while start < n:
        end = start + target_size
        if end < n:
            # only the tail of the window is searched so every step moves forward
            cut = _last_sentence_break(text[start:end], max(overlap, target_size // 2))
            if cut is not None:
                end = start + cut
        else:
            end = n

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)

        start = end - overlap
        if start >= n - overlap:
            break
    return chunks


@dataclass(frozen=True)
class Chunker:
    target_size: int = 500
    overlap: int = 50

    def chunk(self, text: str) -> list[str]:
        return chunk_text(text, self.target_size, self.overlap)


def tokenize_query(query: str) -> list[str]:
    """Single CJK ideographs plus latin/numeric words longer than one character."""
    lowered = query.lower()
    tokens = _CJK_CHAR.findall(lowered)
    latin = _NON_WORD.sub(" ", _CJK_CHAR.sub(" ", lowered))
    tokens.extend(w for w in latin.split() if len(w) > 1)
    # order kept, duplicates add nothing to an OR filter
    return list(dict.fromkeys(tokens))
