"""Suppress provider results that duplicate internal catalog places."""
from __future__ import annotations

from typing import Iterable, List, Sequence, Set

from . import config
from .models import ExternalPlace, Place


def _norm_name(name: str) -> str:
    return (name or "").strip().lower()


def is_duplicate(internal: Place, external: ExternalPlace) -> bool:
    if internal.external_id and internal.external_id == external.provider_id:
        return True
    if internal.coordinate is None:
        return False
    if _norm_name(internal.title) != _norm_name(external.name):
        return False
    eps = config.DEDUP_COORD_EPSILON_DEG
    return (
        abs(internal.coordinate.lat - external.coordinate.lat) < eps
        and abs(internal.coordinate.lng - external.coordinate.lng) < eps
    )


def merge(internal: Sequence[Place], external: Iterable[ExternalPlace]) -> List[ExternalPlace]:
    """Return the provider places that survive as distinct markers.

    Order is preserved. Survivors are also unique by provider id.
    """
    known_ids: Set[str] = {p.external_id for p in internal if p.external_id}
    survivors: List[ExternalPlace] = []
    seen: Set[str] = set()
    for ext in external:
        if ext.provider_id in seen:
            continue
        if ext.provider_id in known_ids:
            continue
        if any(is_duplicate(p, ext) for p in internal):
            continue
        seen.add(ext.provider_id)
        survivors.append(ext)
    return survivors
