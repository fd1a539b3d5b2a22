"""Walks confirmed block headers in bounded batches."""

from __future__ import annotations

import logging
from typing import Any

from chainsync.models import BlockHeader
from chainsync.rpcclient import ChainAccountError

log = logging.getLogger(__name__)


class BatchBlockAheadOfProviderError(Exception):
    """The traversal has gone past what the provider reports as confirmed."""

    def __init__(self) -> None:
        super().__init__("the BatchBlock's internal state is ahead of the provider")


class BatchBlock:
    """Yields successive runs of headers that are deep enough to be confirmed."""

    def __init__(
        self,
        rpc_client: Any,
        from_header: BlockHeader | None,
        confirmation_depth: int,
    ) -> None:
        self._rpc = rpc_client
        self._latest: BlockHeader | None = None
        self._last_traversed = from_header
        self._depth = confirmation_depth

    @property
    def latest_header(self) -> BlockHeader | None:
        """The chain head seen by the most recent query."""
        return self._latest

    @property
    def last_traversed_header(self) -> BlockHeader | None:
        """The last header handed out."""
        return self._last_traversed

    def next_headers(self, max_size: int) -> list[BlockHeader]:
        """Return up to ``max_size`` confirmed headers after the last traversed one."""
        try:
            latest = self._rpc.get_block_header(None)
        except ChainAccountError as exc:
            raise ChainAccountError(f"unable to query latest block: {exc}") from exc
        self._latest = latest

        end_height = latest.number - self._depth
        if end_height < 0:
            return []
        if self._last_traversed is not None:
            if self._last_traversed.number == end_height:
                return []
            if self._last_traversed.number > end_height:
                raise BatchBlockAheadOfProviderError()

        next_height = 0 if self._last_traversed is None else self._last_traversed.number + 1
        end_height = min(end_height, next_height + max_size - 1)

        headers = []
        for height in range(next_height, end_height + 1):
            try:
                headers.append(self._rpc.get_block_header(height))
            except ChainAccountError:
                log.error("get block header %d failed", height)
                raise
        if not headers:
            return []
        self._last_traversed = headers[-1]
        return headers