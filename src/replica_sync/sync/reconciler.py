"""Reconciliation: propose a master replica for one difference.

``guess_operation`` is pure and never guesses between independently
modified copies.  Hosts wanting automatic resolution of conflicts use one
of the policies in ``resolver.py`` instead.
"""

from __future__ import annotations

from .models import Difference, Operation


def guess_operation(difference: Difference) -> Operation:
    """Propose an operation for *difference*.

    - Exactly one replica changed relative to its baseline: propagate from
      it, unless it removed a directory that other replicas changed below.
    - More than one replica changed: ambiguous.
    - No replica changed but the baselines disagree (stale baseline):
      propagate from the lowest-index replica holding the newest archive
      generation.
    - Otherwise: unchanged.
    """
    changed = difference.changed_replicas()

    if len(changed) == 1:
        master = changed[0]
        if difference.descendant_changes - {master}:
            return Operation.ambiguous()
        return Operation.propagate_from(master)

    if len(changed) > 1:
        return Operation.ambiguous()

    mode = difference.mode
    current = difference.current
    if all(current[0].matches(fp, mode) for fp in current[1:]):
        return Operation.unchanged()

    known = [
        (generation, index)
        for index, generation in enumerate(difference.generations)
        if generation is not None
    ]
    if not known:
        return Operation.ambiguous()
    newest = max(generation for generation, _ in known)
    return Operation.propagate_from(
        min(index for generation, index in known if generation == newest)
    )
