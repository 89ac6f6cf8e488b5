"""Découpage de texte en segments bornés pour l'embedding.

Le découpage privilégie les fins de phrase situées dans les 30 % finaux de la fenêtre; à défaut il
coupe à la borne brute de la fenêtre et fait reculer le début du segment suivant de `overlap_size`
caractères pour conserver la continuité du contexte. Fonction pure, déterministe, sans I/O.
"""

from __future__ import annotations

from content_assistant.domain.errors import ValidationError

DEFAULT_MAX_CHUNK_SIZE = 1000
DEFAULT_OVERLAP_SIZE = 100
SENTENCE_TERMINATORS = (".", "!", "?")
# Fraction de la fenêtre au-delà de laquelle une fin de phrase est acceptée comme coupure.
SENTENCE_CUT_RATIO = 0.7


def _validate_bounds(max_chunk_size: int, overlap_size: int) -> None:
    if max_chunk_size <= 0:
        raise ValidationError("max_chunk_size must be positive")
    if overlap_size < 0:
        raise ValidationError("overlap_size must not be negative")
    if overlap_size >= max_chunk_size:
        raise ValidationError("overlap_size must be smaller than max_chunk_size")


def _last_terminator(window: str) -> int:
    return max(window.rfind(t) for t in SENTENCE_TERMINATORS)


def chunk_text(
    text: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    overlap_size: int = DEFAULT_OVERLAP_SIZE,
) -> list[str]:
    """Découpe `text` en segments d'au plus `max_chunk_size` caractères.

    Args:
        text: Texte brut à découper.
        max_chunk_size: Taille maximale d'un segment.
        overlap_size: Recouvrement appliqué après une coupure brute (hors fin de phrase).

    Returns:
        list[str]: Segments non vides, dans l'ordre du texte. Un texte court est renvoyé tel quel.

    Raises:
        ValidationError: Si `overlap_size >= max_chunk_size` ou si les bornes sont négatives.
    """
    _validate_bounds(max_chunk_size, overlap_size)
    if len(text) <= max_chunk_size:
        return [text]

    chunks: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(start + max_chunk_size, length)
        window = text[start:end]
        if end >= length:
            chunks.append(window.strip())
            break
        cut = _last_terminator(window)
        if cut > max_chunk_size * SENTENCE_CUT_RATIO:
            chunks.append(window[: cut + 1].strip())
            start += cut + 1
        else:
            chunks.append(window.strip())
            start = end - overlap_size
    return [c for c in chunks if c]
