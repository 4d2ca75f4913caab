"""
HTTP client for the ledger service.

Covers the three calls the viewer makes:
- create an interactive demo session
- fetch a range of finalized messages for gap recovery
- build the live feed URLs (consumed by the stream transport)

Usage:
    client = LedgerClient("http://localhost:4000")
    info = await client.create_demo_session()
    envelopes = await client.fetch_hand_messages(info.game_id, info.hand_id, seq_ids=[3, 4])
    await client.aclose()
"""

import logging
from typing import Any, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel, ValidationError

from constants import DEFAULT_PLAYER_COUNT, HAND_CREATED, MAX_SEATS
from models.envelope import (
    DecodeError,
    FinalizedEnvelope,
    HandCreated,
    decode_finalized_envelope,
    map_hand_message,
)

logger = logging.getLogger(__name__)


class LedgerApiError(Exception):
    """Ledger request failed (non-2xx response or network error)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RecoveryFetchError(LedgerApiError):
    """Gap-fill query failed."""
    pass


class DemoSessionInfo(BaseModel):
    """Response of the create-session call."""

    demo_id: UUID
    game_id: int
    hand_id: int
    viewer_public_key: str
    initial_snapshot: Optional[dict[str, Any]] = None

    def _roster_size(self, key: str) -> Optional[int]:
        roster = (self.initial_snapshot or {}).get(key)
        if isinstance(roster, dict):
            # Seating maps empty seats to null
            return sum(1 for value in roster.values() if value is not None) or None
        if isinstance(roster, list):
            return len(roster) or None
        return None

    @property
    def player_count(self) -> int:
        count = self._roster_size("seating") or self._roster_size("players")
        if count is None or count > MAX_SEATS:
            return DEFAULT_PLAYER_COUNT
        return count

    @property
    def shuffler_count(self) -> Optional[int]:
        return self._roster_size("shufflers")

    def to_hand_created(self) -> HandCreated:
        """
        The hand_created event for the demo hand.

        Phase streams only carry game events, so the hand is announced from
        the create-session response instead.
        """
        return HandCreated(
            type=HAND_CREATED,
            game_id=self.game_id,
            hand_id=self.hand_id,
            player_count=self.player_count,
            shuffler_count=self.shuffler_count,
            snapshot=self.initial_snapshot,
        )


class LedgerClient:
    """Async client for the ledger HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Ledger API root, e.g. http://localhost:4000.
            timeout: Per-request timeout in seconds.
            client: Shared httpx client; one is created (and owned) if omitted.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    # -------------------------------------------------------------------------
    # URLs
    # -------------------------------------------------------------------------

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def demo_stream_url(self) -> str:
        return self.url("/games/demo/stream")

    def shuffle_stream_url(self, demo_id) -> str:
        return self.url(f"/games/demo/{demo_id}/shuffle")

    def deal_stream_url(self, demo_id) -> str:
        return self.url(f"/games/demo/{demo_id}/deal")

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: type[LedgerApiError] = LedgerApiError,
        **kwargs,
    ) -> Any:
        try:
            response = await self.client.request(
                method, self.url(path), timeout=self.timeout, **kwargs,
            )
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise error_cls(
                f"{method} {path} returned {response.status_code}: {response.reason_phrase}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise error_cls(
                f"{method} {path} returned invalid JSON",
                status=response.status_code,
            ) from e

    async def create_demo_session(self) -> DemoSessionInfo:
        """
        Create an interactive demo session.

        Raises:
            LedgerApiError: If the request fails or the response is malformed.
        """
        data = await self._request("POST", "/games/demo")
        try:
            info = DemoSessionInfo.model_validate(data)
        except ValidationError as e:
            raise LedgerApiError(f"Invalid create-demo response: {e}") from e
        logger.info(f"Created demo session {info.demo_id} (game={info.game_id}, hand={info.hand_id})")
        return info

    async def fetch_hand_messages(
        self,
        game_id: int,
        hand_id: int,
        seq_ids: Optional[list[int]] = None,
        since_seq_id: Optional[int] = None,
    ) -> list[FinalizedEnvelope]:
        """
        Fetch finalized messages of a hand.

        An explicit id set is collapsed into one [min, max] range query.

        Args:
            game_id: Ledger game id.
            hand_id: Ledger hand id.
            seq_ids: Specific sequence ids wanted.
            since_seq_id: Fetch everything from this id on (ignored if seq_ids given).

        Returns:
            Decoded envelopes sorted by sequence id. Entries that fail to
            decode are logged and left out.

        Raises:
            RecoveryFetchError: If the request fails.
        """
        params: dict[str, int] = {}
        if seq_ids:
            params["from_sequence"] = min(seq_ids)
            params["to_sequence"] = max(seq_ids)
        elif since_seq_id is not None:
            params["from_sequence"] = since_seq_id

        data = await self._request(
            "GET",
            f"/games/{game_id}/hands/{hand_id}/messages",
            error_cls=RecoveryFetchError,
            params=params,
        )
        if not isinstance(data, dict):
            raise RecoveryFetchError("Hand messages response is not an object")

        entries = data.get("messages")
        if entries is None:
            entries = data.get("events", [])

        envelopes = []
        for entry in entries:
            try:
                envelopes.append(self._decode_entry(entry, game_id, hand_id))
            except DecodeError as e:
                logger.warning(f"Dropping undecodable hand message: {e}")
        envelopes.sort(key=lambda env: env.seq_id)
        return envelopes

    @staticmethod
    def _decode_entry(entry: Any, game_id: int, hand_id: int) -> FinalizedEnvelope:
        if isinstance(entry, dict) and "sequence" in entry and "payload" in entry:
            return map_hand_message(entry, game_id, hand_id)
        return decode_finalized_envelope(entry)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
