from __future__ import annotations

from typing import FrozenSet, Mapping

from src.core.errors import InvalidStateTransitionError

TransitionTable = Mapping[str, FrozenSet[str]]


def can_transition(table: TransitionTable, current: str, target: str) -> bool:
    return target in table.get(current, frozenset())


def ensure_transition(table: TransitionTable, entity: str, current: str, target: str) -> None:
    if not can_transition(table, current, target):
        raise InvalidStateTransitionError(entity, current, target)


def is_terminal(table: TransitionTable, state: str) -> bool:
    return not table.get(state)
