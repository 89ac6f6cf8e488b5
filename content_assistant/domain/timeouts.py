"""Bornage des appels aux collaborateurs externes.

Un dépassement de délai devient une erreur de transport typée (statut 504), traitée comme tout
autre échec du collaborateur (repli en recherche, propagation en écriture).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from content_assistant.domain.errors import CollaboratorError

T = TypeVar("T")


async def bounded(
    awaitable: Awaitable[T],
    timeout_s: float | None,
    operation: str,
    error_cls: type[CollaboratorError] = CollaboratorError,
) -> T:
    """Attend `awaitable` au plus `timeout_s` secondes.

    Args:
        awaitable: Appel au collaborateur.
        timeout_s: Délai maximal (None: pas de borne).
        operation: Nom de l'opération (message d'erreur).
        error_cls: Classe d'erreur levée en cas de dépassement.

    Raises:
        CollaboratorError: Sous-classe `error_cls`, statut 504, en cas de dépassement.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except TimeoutError as exc:
        raise error_cls.timeout(operation) from exc
