"""Exclusive marker selection driven by explicit press events."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import AbstractSet, Optional, Union

from .http import InvariantViolation
from .models import ExternalPlace, Place

logger = logging.getLogger(__name__)


class MarkerKind(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(frozen=True)
class MarkerPressed:
    kind: MarkerKind
    place: Union[Place, ExternalPlace]


@dataclass(frozen=True)
class BackgroundPressed:
    pass


SelectionEvent = Union[MarkerPressed, BackgroundPressed]


@dataclass(frozen=True)
class Selection:
    """At most one of internal/external is set."""

    internal: Optional[Place] = None
    external: Optional[ExternalPlace] = None

    @property
    def is_empty(self) -> bool:
        return self.internal is None and self.external is None

    @property
    def kind(self) -> Optional[MarkerKind]:
        if self.internal is not None:
            return MarkerKind.INTERNAL
        if self.external is not None:
            return MarkerKind.EXTERNAL
        return None


NO_SELECTION = Selection()


class SelectionStateMachine:
    def __init__(self) -> None:
        self._state: Selection = NO_SELECTION

    @property
    def state(self) -> Selection:
        return self._state

    def handle(self, event: SelectionEvent) -> Selection:
        if isinstance(event, BackgroundPressed):
            self._state = NO_SELECTION
        elif isinstance(event, MarkerPressed):
            self._state = _selection_for(event)
        else:
            raise TypeError(f"Unknown selection event: {event!r}")
        return self._state

    def clear(self) -> Selection:
        self._state = NO_SELECTION
        return self._state

    def check(self, internal_ids: AbstractSet[str], external_ids: AbstractSet[str]) -> None:
        state = self._state
        if state.internal is not None and state.internal.id not in internal_ids:
            raise InvariantViolation(f"Selected place {state.internal.id} is no longer shown")
        if state.external is not None and state.external.provider_id not in external_ids:
            raise InvariantViolation(
                f"Selected provider place {state.external.provider_id} is no longer shown"
            )

    def reconcile(self, internal_ids: AbstractSet[str], external_ids: AbstractSet[str]) -> Selection:
        try:
            self.check(internal_ids, external_ids)
        except InvariantViolation as exc:
            logger.info("Resetting selection: %s", exc)
            self._state = NO_SELECTION
        return self._state


def _selection_for(event: MarkerPressed) -> Selection:
    kind = MarkerKind(event.kind)
    if kind == MarkerKind.INTERNAL:
        if not isinstance(event.place, Place):
            raise TypeError("Internal marker press requires a catalog Place")
        return Selection(internal=event.place)
    if not isinstance(event.place, ExternalPlace):
        raise TypeError("External marker press requires an ExternalPlace")
    return Selection(external=event.place)
