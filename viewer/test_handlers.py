"""
Test suite for live feed event handlers.

Tests handler dispatch, shuffle counting, deal start and share attribution
using a recording dispatch function.

Run with: pytest test_handlers.py -v
"""

import random
from types import SimpleNamespace
from unittest.mock import MagicMock

from constants import STREAM_EVENT_TYPES
from conftest import (
    blinding_message,
    build_envelope,
    partial_unblinding_message,
    player_actor,
    shuffle_message,
    shuffler_actor,
)
from handlers import (
    HANDLERS,
    DemoEventHandler,
    EventHandlerCallbacks,
    HandlerContext,
    card_slot,
    contributor_key,
)
from models.actions import ActionType
from models.cards import Card, Suit
from models.demo_state import ClientPhase, reduce_all
from models.envelope import (
    Actor,
    CardDecryptable,
    HandCompleted,
    HandCreated,
    HoleCardsDecrypted,
    PlayerCreated,
)


# =============================================================================
# Helpers
# =============================================================================

class RecordingDispatch:
    """Collects every action the handler produces."""

    def __init__(self):
        self.actions = []

    def __call__(self, action):
        self.actions.append(action)

    def of_type(self, action_type: ActionType) -> list:
        return [a for a in self.actions if a.type == action_type]

    def types(self) -> list[ActionType]:
        return [a.type for a in self.actions]


def make_handler(callbacks=None):
    dispatch = RecordingDispatch()
    handler = DemoEventHandler(dispatch, callbacks=callbacks, rng=random.Random(7))
    return handler, dispatch


def hand_created(player_count=3, shuffler_count=2, snapshot=None) -> HandCreated:
    return HandCreated(
        type="hand_created",
        game_id=1,
        hand_id=1,
        player_count=player_count,
        shuffler_count=shuffler_count,
        snapshot=snapshot,
    )


# =============================================================================
# Pure helpers
# =============================================================================

class TestCardSlot:

    def test_two_cards_per_seat(self):
        assert card_slot(0) == (0, 0)
        assert card_slot(1) == (0, 1)
        assert card_slot(2) == (1, 0)
        assert card_slot(17) == (8, 1)

    def test_contributor_key(self):
        assert contributor_key(Actor.model_validate(player_actor(3))) == "seat:3"
        assert contributor_key(Actor.model_validate(shuffler_actor(2))) == "shuffler:2"
        assert contributor_key(Actor.model_validate("none")) == "none"


# =============================================================================
# Feed events
# =============================================================================

class TestHandleHandCreated:

    def test_initializes_and_starts_shuffle(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(hand_created(player_count=4, shuffler_count=3))

        assert dispatch.types()[:2] == [ActionType.INIT_GAME, ActionType.START_SHUFFLE]
        progress = dispatch.of_type(ActionType.SHUFFLE_PROGRESS)
        assert progress[0].data == {"current_step": 0, "total_steps": 3}
        assert handler.context.player_count == 4
        assert handler.context.total_shuffle_events == 3

    def test_viewer_key_from_snapshot(self):
        handler, dispatch = make_handler()
        snapshot = {"players": [
            {"seat": 1, "public_key": "0x01"},
            {"seat": 0, "public_key": "0xbeef"},
        ]}

        handler.handle_demo_event(hand_created(snapshot=snapshot))

        init = dispatch.of_type(ActionType.INIT_GAME)[0]
        assert init.data["public_key"] == "0xbeef"

    def test_player_created_key_wins_over_snapshot(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(PlayerCreated(
            type="player_created", game_id=1, seat=0, display_name="Alice", public_key="0xaaaa",
        ))

        handler.handle_demo_event(hand_created(snapshot={"players": [{"seat": 0, "public_key": "0xbbbb"}]}))

        assert dispatch.of_type(ActionType.INIT_GAME)[0].data["public_key"] == "0xaaaa"

    def test_phase_change_callback(self):
        on_phase_change = MagicMock()
        handler, _ = make_handler(EventHandlerCallbacks(on_phase_change=on_phase_change))

        handler.handle_demo_event(hand_created())

        on_phase_change.assert_called_once_with("shuffling")


class TestHandlePlayerCreated:

    def test_viewer_seat_sets_public_key(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(PlayerCreated(
            type="player_created", game_id=1, seat=0, display_name="Alice", public_key="0xbeef",
        ))

        assert dispatch.of_type(ActionType.SET_VIEWER_PUBLIC_KEY)[0].data == {"public_key": "0xbeef"}
        assert handler.context.viewer_public_key == "0xbeef"

    def test_other_seat_only_updates_status(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(PlayerCreated(
            type="player_created", game_id=1, seat=2, display_name="Bob", public_key="0xb0b",
        ))

        assert dispatch.types() == [ActionType.UPDATE_STATUS]
        assert dispatch.actions[0].data["message"] == "Player 3 joined"


class TestHandleReveals:

    def test_card_decryptable(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(CardDecryptable(
            type="card_decryptable", game_id=1, hand_id=1, seat=2, card_position=1,
        ))

        assert dispatch.of_type(ActionType.CARD_DECRYPTABLE)[0].data == {"seat": 2, "card_index": 1}

    def test_other_seat_reveal_status_hides_face(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(HoleCardsDecrypted(
            type="hole_cards_decrypted", game_id=1, hand_id=1, seat=3, card_position=0,
            card=Card(rank=12, suit=Suit.CLUBS),
        ))

        status = dispatch.of_type(ActionType.UPDATE_STATUS)[0].data["message"]
        assert status == "Player 3 card revealed"
        assert "Q" not in status

    def test_viewer_reveal_status_shows_face(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(HoleCardsDecrypted(
            type="hole_cards_decrypted", game_id=1, hand_id=1, seat=0, card_position=1,
            card=Card(rank=12, suit=Suit.CLUBS),
        ))

        assert dispatch.of_type(ActionType.UPDATE_STATUS)[0].data["message"] == "Your Q♣ revealed!"

    def test_hand_completed(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(HandCompleted(type="hand_completed", game_id=1, hand_id=1))

        assert ActionType.HAND_COMPLETE in dispatch.types()


# =============================================================================
# Protocol messages
# =============================================================================

class TestShuffleMessages:

    def test_progress_and_completion(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(hand_created(shuffler_count=2))

        handler.handle_game_envelope(build_envelope(0, shuffle_message(0)))
        handler.handle_game_envelope(build_envelope(1, shuffle_message(1)))

        steps = [a.data["current_step"] for a in dispatch.of_type(ActionType.SHUFFLE_PROGRESS)]
        assert steps == [0, 1, 2]
        assert len(dispatch.of_type(ActionType.SHUFFLE_COMPLETE)) == 1

        state = reduce_all(dispatch.actions)
        assert state.phase == ClientPhase.DEALING
        assert state.last_seq_id == 1

    def test_missing_shuffler_count_reports_error_once(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(hand_created(shuffler_count=None))

        for seq_id in range(3):
            handler.handle_game_envelope(build_envelope(seq_id, shuffle_message(seq_id)))

        errors = dispatch.of_type(ActionType.SET_ERROR)
        assert len(errors) == 1
        assert "shuffler count unknown" in errors[0].data["error"]
        progress = dispatch.of_type(ActionType.SHUFFLE_PROGRESS)
        assert [a.data for a in progress][-1] == {"current_step": 3, "total_steps": 0}
        assert not dispatch.of_type(ActionType.SHUFFLE_COMPLETE)

    def test_shuffle_progress_callback(self):
        on_progress = MagicMock()
        handler, _ = make_handler(EventHandlerCallbacks(on_shuffle_progress=on_progress))
        handler.handle_demo_event(hand_created(shuffler_count=3))

        handler.handle_game_envelope(build_envelope(0, shuffle_message()))

        on_progress.assert_called_once_with(1, 3)


class TestBlindingMessages:

    def test_first_blinding_starts_dealing_once(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(hand_created(player_count=3))

        handler.handle_game_envelope(build_envelope(0, blinding_message(0), actor=player_actor(1)))
        handler.handle_game_envelope(build_envelope(1, blinding_message(2), actor=player_actor(2)))

        assert len(dispatch.of_type(ActionType.START_DEALING)) == 1
        assert len(dispatch.of_type(ActionType.CARD_DEALT)) == 6
        assert handler.context.dealing_started

    def test_deal_callbacks_follow_deal_order(self):
        on_card_dealt = MagicMock()
        handler, _ = make_handler(EventHandlerCallbacks(on_card_dealt=on_card_dealt))
        handler.handle_demo_event(hand_created(player_count=2))

        handler.handle_game_envelope(build_envelope(0, blinding_message(0)))

        calls = [c.args for c in on_card_dealt.call_args_list]
        assert calls == [(0, 0, 0), (1, 0, 1), (0, 1, 2), (1, 1, 3)]

    def test_share_attributed_to_target_card(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(hand_created(player_count=3))

        handler.handle_game_envelope(
            build_envelope(0, blinding_message(3, share="0xabcd"), actor=player_actor(2))
        )

        share = dispatch.of_type(ActionType.BLINDING_SHARE_RECEIVED)[0]
        assert share.data == {
            "seat": 1,
            "card_index": 1,
            "from_seat": 2,
            "contributor": "seat:2",
            "share": "0xabcd",
        }

    def test_shuffler_share_has_unknown_seat(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(hand_created(player_count=3))

        handler.handle_game_envelope(build_envelope(0, blinding_message(0), actor=shuffler_actor(4)))

        share = dispatch.of_type(ActionType.BLINDING_SHARE_RECEIVED)[0]
        assert share.data["from_seat"] == -1
        assert share.data["contributor"] == "shuffler:4"

    def test_position_outside_dealt_cards_is_ignored(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(hand_created(player_count=2))

        handler.handle_game_envelope(build_envelope(0, blinding_message(30)))

        assert not dispatch.of_type(ActionType.BLINDING_SHARE_RECEIVED)

    def test_full_deal_makes_card_collect_all_shares(self):
        handler, dispatch = make_handler()
        handler.handle_demo_event(hand_created(player_count=2, shuffler_count=1))
        seq_id = 0
        for seat in range(2):
            for builder in (blinding_message, partial_unblinding_message):
                handler.handle_game_envelope(
                    build_envelope(seq_id, builder(1), actor=player_actor(seat))
                )
                seq_id += 1

        state = reduce_all(dispatch.actions)
        assert state.card(0, 1).has_all_shares()
        assert not state.card(1, 0).blinding_shares


class TestUnknownMessages:

    def test_every_feed_event_type_has_a_handler(self):
        assert set(HANDLERS) == set(STREAM_EVENT_TYPES)

    def test_betting_message_only_advances_watermark(self):
        handler, dispatch = make_handler()

        handler.handle_game_envelope(build_envelope(
            5, {"type": "player_preflop", "action": "Call"}, actor=player_actor(1),
        ))

        assert dispatch.types() == [ActionType.EVENT_PROCESSED]

    def test_unknown_event_type_ignored(self):
        handler, dispatch = make_handler()

        handler.handle_demo_event(SimpleNamespace(type="mystery_event"))

        assert dispatch.actions == []

    def test_broken_event_is_skipped(self):
        handler, dispatch = make_handler()
        broken = SimpleNamespace(type="card_decryptable", seat=0, card_position=None)

        handler.handle_demo_event(broken)
        handler.handle_demo_event(HandCompleted(type="hand_completed", game_id=1, hand_id=1))

        assert ActionType.HAND_COMPLETE in dispatch.types()

    def test_failing_callback_does_not_stop_handling(self):
        handler, dispatch = make_handler(EventHandlerCallbacks(
            on_phase_change=MagicMock(side_effect=RuntimeError("ui broke")),
        ))

        handler.handle_demo_event(hand_created())

        assert ActionType.UPDATE_STATUS in dispatch.types()


class TestReset:

    def test_reset_clears_context(self):
        handler, _ = make_handler()
        handler.handle_demo_event(hand_created())
        handler.handle_game_envelope(build_envelope(0, blinding_message(0)))

        handler.reset()

        assert handler.context == HandlerContext()
