"""Sequential, human-readable team codes backed by a single counter row."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from eventteams.config import get_settings
from eventteams.errors import TransactionConflict
from eventteams.models.counter import TeamCodeCounter

_LOGGER = logging.getLogger(__name__)

# Codes are always zero-padded to five digits, e.g. RAIoT-00042
TEAM_CODE_WIDTH = 5


class CodeAllocator:
    """Issue strictly increasing codes such as ``RAIoT-00001``.

    ``allocate`` must run inside the transaction that inserts the team. It
    compares-and-swaps the counter row, so a concurrent allocation makes it
    raise :class:`TransactionConflict` and the caller's whole unit of work is
    retried. A number is therefore never skipped or handed out twice.
    """

    def __init__(self, *, prefix: Optional[str] = None) -> None:
        settings = get_settings()
        self.prefix = prefix or settings.team_code_prefix

    def format_code(self, number: int) -> str:
        return f"{self.prefix}-{number:0{TEAM_CODE_WIDTH}d}"

    async def peek(self, session: AsyncSession) -> int:
        """Last number issued in this namespace (0 when nothing was issued)."""
        current = await session.scalar(
            select(TeamCodeCounter.current).where(TeamCodeCounter.namespace == self.prefix)
        )
        return current or 0

    async def allocate(self, session: AsyncSession) -> int:
        observed = await session.scalar(
            select(TeamCodeCounter.current).where(TeamCodeCounter.namespace == self.prefix)
        )

        if observed is None:
            # First code of the namespace; a racing insert trips the primary key.
            await session.execute(
                insert(TeamCodeCounter).values(namespace=self.prefix, current=1)
            )
            _LOGGER.info("Initialised team code counter for namespace %s", self.prefix)
            return 1

        result = await session.execute(
            update(TeamCodeCounter)
            .where(
                TeamCodeCounter.namespace == self.prefix,
                TeamCodeCounter.current == observed,
            )
            .values(current=observed + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TransactionConflict(
                f"team code counter {self.prefix} moved past {observed}"
            )
        return observed + 1


__all__ = ["TEAM_CODE_WIDTH", "CodeAllocator"]
