"""Static assignment of (species, Bessel-order range) to worker ranks.

Rank 0 is the coordinator and integrates nothing; ranks ``1..W-1`` each
own one contiguous order range of one species.  The partition depends only
on the per-species maximum orders and the worker count, so every rank
computes the same result independently.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

from lindisp.species import SpeciesKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkAssignment:
    """Inclusive Bessel-order range of one species owned by one rank."""

    rank: int
    species: int
    n_min: int
    n_max: int

    @property
    def orders(self) -> range:
        return range(self.n_min, self.n_max + 1)


def inflate_orders(
    nmax: Sequence[int],
    kinds: Sequence[SpeciesKind],
    n_workers: int,
) -> list[int]:
    """Raise per-species maximum orders until every integrating rank has work.

    Orders are added one at a time, round-robin over the species that
    integrate on the grid (bi-Maxwellian species are skipped), until the
    total number of order units reaches ``n_workers - 1``.
    """
    out = list(nmax)
    target = n_workers - 1
    eligible = [i for i, k in enumerate(kinds) if k is not SpeciesKind.BI_MAXWELLIAN]
    if not eligible:
        return out
    added = 0
    turn = 0
    while sum(n + 1 for n in out) < target:
        out[eligible[turn % len(eligible)]] += 1
        turn += 1
        added += 1
    if added:
        logger.info("Added %d Bessel orders to keep %d workers busy: n_max=%s", added, target, out)
    return out


def _workers_per_species(units: list[int], n_workers: int) -> list[int]:
    ideal = math.ceil(sum(units) / n_workers)
    procs = [1 if c <= ideal else c // ideal for c in units]

    # Leftover workers go to the species with the largest unserved remainder.
    while sum(procs) < n_workers:
        open_species = [i for i in range(len(units)) if procs[i] < units[i]]
        if not open_species:
            break
        best = max(open_species, key=lambda i: units[i] - procs[i] * ideal)
        procs[best] += 1
    # Over-subscription: take workers back from the species with the most.
    while sum(procs) > n_workers:
        best = max(range(len(units)), key=lambda i: procs[i])
        procs[best] -= 1
    return procs


def partition_work(nmax: Sequence[int], n_workers: int) -> list[WorkAssignment]:
    """Split orders ``0..nmax[s]`` of every species over ranks ``1..n_workers-1``.

    Each species receives a number of ranks proportional to its order
    count (at least one); its order range is cut into equal contiguous
    pieces with the last piece absorbing the remainder.

    Args:
        nmax: Maximum Bessel order per species.
        n_workers: Total number of ranks including the coordinator.

    Returns:
        One ``WorkAssignment`` per integrating rank, ordered by rank.

    Raises:
        ValueError: Fewer than two ranks, or fewer integrating ranks than
            species.
    """
    if n_workers < 2:
        raise ValueError(f"parallel partition needs at least 2 workers, got {n_workers}")
    workers = n_workers - 1
    if workers < len(nmax):
        raise ValueError(
            f"{workers} integrating workers cannot cover {len(nmax)} species; "
            "use at least one worker per species plus the coordinator"
        )
    units = [n + 1 for n in nmax]
    procs = _workers_per_species(units, workers)

    assignments = []
    rank = 1
    for s, (count, k) in enumerate(zip(units, procs)):
        split = count // k
        for piece in range(k):
            lo = piece * split
            hi = count - 1 if piece == k - 1 else lo + split - 1
            assignments.append(WorkAssignment(rank=rank, species=s, n_min=lo, n_max=hi))
            rank += 1
    if rank - 1 < workers:
        logger.warning("%d of %d workers received no Bessel orders", workers - rank + 1, workers)
    logger.debug("Work partition: %s", assignments)
    return assignments


def serial_assignments(nmax: Sequence[int]) -> list[WorkAssignment]:
    """One full-range assignment per species for a single-process run."""
    return [WorkAssignment(rank=0, species=s, n_min=0, n_max=n) for s, n in enumerate(nmax)]
