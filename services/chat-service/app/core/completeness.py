from typing import Optional

SENTENCE_END = (".", "!", "?", "。", "！", "？")
MIN_CHECKED_LENGTH = 40
TABLE_FRAGMENT_MAX_LEN = 15


def _ends_sentence(text: str) -> bool:
    return text.endswith(SENTENCE_END)


def is_table_fragment(line: str) -> bool:
    """A short last line with a pipe and no closing punctuation, like ``| a | b``."""
    stripped = line.strip()
    return "|" in stripped and len(stripped) < TABLE_FRAGMENT_MAX_LEN and not _ends_sentence(stripped)


def is_complete(text: Optional[str]) -> bool:
    """Guess whether a reply reached its natural end.

    Blank and short replies always count as complete so an empty or terse
    answer never triggers a continuation call.
    """
    if text is None or not text.strip():
        return True
    trimmed = text.strip()
    if len(trimmed) < MIN_CHECKED_LENGTH:
        return True
    last_line = trimmed.split("\n")[-1]
    return _ends_sentence(trimmed) and not is_table_fragment(last_line)
