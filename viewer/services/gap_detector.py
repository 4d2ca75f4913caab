"""
Sequence gap detection for the live feed.

The ledger numbers every finalized envelope with snapshot_sequence_id, but the
feed may deliver them out of order, twice, or not at all. GapDetector buffers
early arrivals and releases envelopes strictly in sequence order, each exactly
once. When an arrival is ahead of the next expected id, the ids in between are
reported as missing so the caller can fetch them.

Usage:
    detector = GapDetector()
    result = detector.detect_gaps(envelope)
    for ready in result.ready_events:
        apply(ready)
    if result.has_gap:
        fetched = await fetch(result.missing_seq_ids)
        for ready in detector.process_fetched_events(fetched):
            apply(ready)
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from models.envelope import FinalizedEnvelope

logger = logging.getLogger(__name__)


@dataclass
class GapDetectionResult:
    """Outcome of feeding one envelope to the detector."""

    has_gap: bool
    missing_seq_ids: list[int] = field(default_factory=list)
    ready_events: list[FinalizedEnvelope] = field(default_factory=list)


class GapDetector:
    """
    Reorders finalized envelopes by sequence id.

    Every id below expected_seq_id has been released exactly once; nothing is
    released before all smaller ids have been.
    """

    def __init__(self, starting_seq_id: int = 0):
        self._expected_seq_id = starting_seq_id
        self._pending: dict[int, FinalizedEnvelope] = {}

    def detect_gaps(self, event: FinalizedEnvelope) -> GapDetectionResult:
        """
        Buffer an envelope and release whatever is now in order.

        Args:
            event: Envelope received from the live feed.

        Returns:
            has_gap with the missing ids when the envelope is ahead of the
            expected id; otherwise the envelopes now ready, in order.
        """
        seq_id = event.seq_id

        if seq_id < self._expected_seq_id:
            logger.debug(f"Dropping already-released envelope seq={seq_id}")
            return GapDetectionResult(has_gap=False)

        # Duplicates overwrite; release is driven by draining, not by arrivals
        self._pending[seq_id] = event

        if seq_id > self._expected_seq_id:
            missing = [
                s for s in range(self._expected_seq_id, seq_id)
                if s not in self._pending
            ]
            if missing:
                return GapDetectionResult(has_gap=True, missing_seq_ids=missing)

        return GapDetectionResult(has_gap=False, ready_events=self._drain())

    def process_fetched_events(
        self,
        events: Iterable[FinalizedEnvelope],
    ) -> list[FinalizedEnvelope]:
        """
        Merge envelopes returned by a recovery fetch.

        Args:
            events: Fetched envelopes, in any order. Ones already released
                are ignored.

        Returns:
            Envelopes that became ready, in sequence order.
        """
        for event in events:
            if event.seq_id >= self._expected_seq_id:
                self._pending[event.seq_id] = event
        return self._drain()

    def _drain(self) -> list[FinalizedEnvelope]:
        ready = []
        while self._expected_seq_id in self._pending:
            ready.append(self._pending.pop(self._expected_seq_id))
            self._expected_seq_id += 1
        return ready

    def reset(self, starting_seq_id: int = 0) -> None:
        """Forget all buffered envelopes and restart at starting_seq_id."""
        self._pending.clear()
        self._expected_seq_id = starting_seq_id

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    @property
    def expected_seq_id(self) -> int:
        return self._expected_seq_id

    def has_pending_events(self) -> bool:
        return bool(self._pending)

    def pending_count(self) -> int:
        return len(self._pending)

    def pending_seq_ids(self) -> list[int]:
        return sorted(self._pending)

    def missing_seq_ids(self) -> list[int]:
        """Ids still blocking release of the buffered envelopes."""
        if not self._pending:
            return []
        newest = max(self._pending)
        return [
            s for s in range(self._expected_seq_id, newest)
            if s not in self._pending
        ]

    def debug_info(self) -> dict:
        pending = self.pending_seq_ids()
        oldest: Optional[int] = pending[0] if pending else None
        newest: Optional[int] = pending[-1] if pending else None
        return {
            "expected_seq_id": self._expected_seq_id,
            "pending_count": len(pending),
            "pending_seq_ids": pending,
            "oldest_pending": oldest,
            "newest_pending": newest,
            "missing_seq_ids": self.missing_seq_ids(),
        }
