"""Fixed-width text chunking for passages."""

from typing import List

DEFAULT_MAX_LEN = 1500  # code points, roughly 300-400 tokens


def chunk_runes(text: str, max_len: int = DEFAULT_MAX_LEN) -> List[str]:
    """
    Split text into consecutive chunks of at most ``max_len`` code points.

    Chunks do not overlap and joining them in order gives back ``text``.
    A non-positive ``max_len`` falls back to the default.
    """
    if max_len <= 0:
        max_len = DEFAULT_MAX_LEN

    return [text[i:i + max_len] for i in range(0, len(text), max_len)]
