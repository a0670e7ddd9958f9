"""Text helpers shared by the question clusterer."""


def normalize_question(text: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    kept = "".join(char for char in text.lower() if char.isalnum() or char.isspace())
    return " ".join(kept.split())


def levenshtein_distance(first: str, second: str) -> int:
    """Minimum number of single-character edits turning one string into the other."""
    if len(first) < len(second):
        first, second = second, first
    if not second:
        return len(first)

    previous_row = list(range(len(second) + 1))
    for i, first_char in enumerate(first, start=1):
        current_row = [i]
        for j, second_char in enumerate(second, start=1):
            substitution = previous_row[j - 1] + (first_char != second_char)
            current_row.append(min(previous_row[j] + 1, current_row[j - 1] + 1, substitution))
        previous_row = current_row
    return previous_row[-1]


def similarity(first: str, second: str) -> float:
    """
    Normalized edit-distance similarity in [0, 1].

    Two empty strings are identical (1.0).
    """
    longest = max(len(first), len(second))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(first, second) / longest
