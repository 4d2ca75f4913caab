"""
Gap recovery: fetch finalized envelopes the live feed skipped.

Recovery is opportunistic. A failed fetch is logged and nothing is scheduled;
the next live arrival ahead of the gap triggers a fresh attempt.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from models.envelope import FinalizedEnvelope
from stores.ledger_client import LedgerClient, RecoveryFetchError

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    """Result of one recovery round."""

    requested: list[int]
    envelopes: list[FinalizedEnvelope] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None

    @property
    def fetched_seq_ids(self) -> list[int]:
        return [env.seq_id for env in self.envelopes]


class RecoveryFetcher:
    """Range-queries the ledger for missing sequence ids."""

    def __init__(self, ledger_client: LedgerClient):
        self.ledger_client = ledger_client

    async def recover(self, game_id: int, hand_id: int, missing_seq_ids: list[int]) -> RecoveryResult:
        """
        Fetch the [min, max] range covering missing_seq_ids.

        Args:
            game_id: Ledger game id.
            hand_id: Ledger hand id.
            missing_seq_ids: Sequence ids the gap detector reported.

        Returns:
            RecoveryResult; on failure success is False and envelopes is empty.
        """
        requested = sorted(set(missing_seq_ids))
        if not requested:
            return RecoveryResult(requested=[])

        logger.info(f"Recovering seq {requested[0]}..{requested[-1]} for hand {hand_id}")
        try:
            envelopes = await self.ledger_client.fetch_hand_messages(
                game_id, hand_id, seq_ids=requested,
            )
        except RecoveryFetchError as e:
            logger.warning(f"Gap recovery failed for hand {hand_id}: {e}")
            return RecoveryResult(requested=requested, success=False, error=str(e))

        still_missing = set(requested) - {env.seq_id for env in envelopes}
        if still_missing:
            logger.warning(
                f"Gap recovery for hand {hand_id} did not return seq {sorted(still_missing)}"
            )
        return RecoveryResult(requested=requested, envelopes=envelopes)
