"""Cluster implementations: single process and MPI.

``MPICluster`` needs the optional ``mpi4py`` dependency
(``pip install lindisp[mpi]``); it is imported only when the cluster is
constructed.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from lindisp.core.bases import Cluster

logger = logging.getLogger(__name__)


class SerialCluster(Cluster):
    """One worker that is also the coordinator; collectives are trivial."""

    @property
    def rank(self) -> int:
        return 0

    @property
    def size(self) -> int:
        return 1

    def reduce_sum(self, array: np.ndarray, root: int = 0) -> np.ndarray:
        return np.array(array, copy=True)

    def bcast(self, value: Any, root: int = 0) -> Any:
        return value

    def barrier(self) -> None:
        pass


class MPICluster(Cluster):
    """Collectives over an ``mpi4py`` communicator.

    Args:
        comm: Communicator to use; defaults to ``MPI.COMM_WORLD``.
    """

    def __init__(self, comm: Any = None) -> None:
        from mpi4py import MPI

        self._mpi = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        logger.debug("MPI rank %d of %d", self.rank, self.size)

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    def reduce_sum(self, array: np.ndarray, root: int = 0) -> np.ndarray | None:
        send = np.ascontiguousarray(array)
        recv = np.empty_like(send) if self.rank == root else None
        self.comm.Reduce(send, recv, op=self._mpi.SUM, root=root)
        return recv

    def bcast(self, value: Any, root: int = 0) -> Any:
        return self.comm.bcast(value, root=root)

    def barrier(self) -> None:
        self.comm.Barrier()
