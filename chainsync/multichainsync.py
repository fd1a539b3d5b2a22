"""Runs the deposit, withdrawal and internal-transfer workers together."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from chainsync.deposit import Deposit
from chainsync.senders import DEFAULT_BACKOFF, Internal, Withdraw


class MultiChainSync:
    """Owns the three chain workers and starts and stops them in order."""

    def __init__(
        self,
        db: Any,
        rpc_client: Any,
        shutdown: Callable[[BaseException], None] | None = None,
        *,
        confirmations: int,
        blocks_step: int,
        synchronizer_interval: float,
        worker_interval: float,
        starting_height: int = 0,
        backoff: tuple[float, float, float] = DEFAULT_BACKOFF,
    ) -> None:
        self.deposit = Deposit(
            db,
            rpc_client,
            shutdown,
            confirmations=confirmations,
            blocks_step=blocks_step,
            synchronizer_interval=synchronizer_interval,
            starting_height=starting_height,
            backoff=backoff,
        )
        self.withdraw = Withdraw(
            db, rpc_client, shutdown, worker_interval=worker_interval, backoff=backoff
        )
        self.internal = Internal(
            db, rpc_client, shutdown, worker_interval=worker_interval, backoff=backoff
        )
        self._stopped = False

    def start(self) -> None:
        """Start deposit, withdrawal and internal workers, in that order."""
        self.deposit.start()
        self.withdraw.start()
        self.internal.start()

    def stop(self) -> None:
        """Close the workers in start order; the first failure is raised."""
        self.deposit.close()
        self.withdraw.close()
        self.internal.close()
        self._stopped = True

    def stopped(self) -> bool:
        """Whether :meth:`stop` has completed."""
        return self._stopped