"""Resolution policies for the sync engine.

A policy reduces one ``Difference`` to an ``Operation``.  Every policy
starts from ``guess_operation`` and only differs in how it treats the
differences the guess leaves ambiguous:

- ``GuessPolicy``: leaves them ambiguous.
- ``NewestWinsPolicy``: picks the changed replica with the newest
  modification time; ties stay ambiguous.
- ``PreferReplicaPolicy``: a configured replica wins every ambiguous
  difference.
- ``InteractivePolicy``: leaves them ambiguous and accumulates them in
  ``pending`` for the host to present (no I/O).

The ``create_policy()`` factory maps config strategy strings to policy
instances.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .models import Difference, Operation, OperationKind
from .reconciler import guess_operation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ResolutionPolicy(Protocol):
    """Protocol that all resolution policies must satisfy."""

    def decide(self, difference: Difference) -> Operation:
        """Return the operation to apply to *difference*."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class GuessPolicy:
    """Use ``guess_operation`` unchanged."""

    def decide(self, difference: Difference) -> Operation:
        return guess_operation(difference)


class NewestWinsPolicy:
    """Resolve conflicts in favour of the most recently modified replica.

    Only replicas that changed and still hold an entry take part, so a
    modification always wins over a deletion.  Equal modification times
    leave the difference ambiguous.
    """

    def decide(self, difference: Difference) -> Operation:
        operation = guess_operation(difference)
        if operation.kind != OperationKind.NO_OP_AMBIGUOUS:
            return operation

        stamped = [
            (difference.current[i].mtime_ns, i)
            for i in difference.changed_replicas()
            if difference.current[i].exists
            and difference.current[i].mtime_ns is not None
        ]
        if not stamped:
            return operation
        newest = max(mtime for mtime, _ in stamped)
        winners = [i for mtime, i in stamped if mtime == newest]
        if len(winners) != 1:
            logger.info(
                "Newest-wins tie for %s between replicas %s",
                difference.path,
                winners,
            )
            return operation
        logger.info(
            "Newest-wins picked replica %d for %s", winners[0], difference.path
        )
        return Operation.propagate_from(winners[0])


class PreferReplicaPolicy:
    """Resolve every ambiguous difference in favour of one replica."""

    def __init__(self, replica: int) -> None:
        if replica < 0:
            raise ValueError(f"invalid replica index {replica}")
        self.replica = replica

    def decide(self, difference: Difference) -> Operation:
        operation = guess_operation(difference)
        if operation.kind != OperationKind.NO_OP_AMBIGUOUS:
            return operation
        if self.replica >= len(difference.roots):
            raise ValueError(
                f"preferred replica {self.replica} out of range for "
                f"{len(difference.roots)} replicas"
            )
        logger.info(
            "Preferring replica %d for %s", self.replica, difference.path
        )
        return Operation.propagate_from(self.replica)


class InteractivePolicy:
    """Defer ambiguous differences to a human.

    Ambiguous differences are accumulated in ``pending`` for the host to
    present.  The policy itself does no I/O.
    """

    def __init__(self) -> None:
        self.pending: list[Difference] = []

    def decide(self, difference: Difference) -> Operation:
        operation = guess_operation(difference)
        if operation.kind == OperationKind.NO_OP_AMBIGUOUS:
            logger.info("Conflict at %s -- pending review", difference.path)
            self.pending.append(difference)
        return operation


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    "guess": GuessPolicy,
    "newest-wins": NewestWinsPolicy,
    "prefer-replica": PreferReplicaPolicy,
    "interactive": InteractivePolicy,
}


def create_policy(
    strategy: str, prefer_replica: int | None = None
) -> ResolutionPolicy:
    """Create a resolution policy for the given strategy string.

    Args:
        strategy: One of ``"guess"``, ``"newest-wins"``,
            ``"prefer-replica"``, ``"interactive"``.
        prefer_replica: Winning replica for ``"prefer-replica"``.

    Returns:
        A ``ResolutionPolicy`` implementation instance.

    Raises:
        ValueError: If the strategy string is not recognised, or
            ``"prefer-replica"`` is requested without a replica.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    if cls is PreferReplicaPolicy:
        if prefer_replica is None:
            raise ValueError(
                "conflict strategy 'prefer-replica' requires prefer_replica"
            )
        return PreferReplicaPolicy(prefer_replica)
    return cls()  # type: ignore[return-value]
