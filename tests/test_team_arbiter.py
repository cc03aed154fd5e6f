"""
Tests for team formation: create, join, admin edits and lobby locking.
"""

import pytest

from core.exceptions import (
    AlreadyAssignedError,
    CapacityError,
    EmptyTeamError,
    InvalidSizeError,
    InvalidStateTransition,
    LobbyClosedError,
    ParticipantNotFound,
    TeamNotFound,
    UnassignedParticipantsError,
    ValidationError,
)
from core.auction_engine import AuctionEngine, get_auction_state
from core.state_machine import get_lobby
from core.team_arbiter import TeamArbiter
from database import settings
from models import AuctionStatus, CatalogueEntry, ItemStatus, LobbyStatus, TeamMember
from tests.conftest import CATALOGUE


class TestCreateTeam:
    def test_creator_becomes_first_member(self, db, register):
        register("E1")
        team = TeamArbiter.create_team(db, "Alpha", 3, "E1")

        assert team.name == "Alpha"
        assert team.max_size == 3
        assert team.member_ids == ["E1"]
        assert team.purse == settings.starting_purse
        assert team.version == 1

    def test_name_is_trimmed(self, db, register):
        register("E1")
        team = TeamArbiter.create_team(db, "  Alpha  ", 3, "E1")
        assert team.name == "Alpha"

    @pytest.mark.parametrize("max_size", [0, 6, -1])
    def test_rejects_size_out_of_range(self, db, register, max_size):
        register("E1")
        with pytest.raises(ValidationError):
            TeamArbiter.create_team(db, "Alpha", max_size, "E1")

    def test_rejects_blank_name(self, db, register):
        register("E1")
        with pytest.raises(ValidationError, match="name"):
            TeamArbiter.create_team(db, "   ", 3, "E1")

    def test_unregistered_creator(self, db):
        with pytest.raises(ParticipantNotFound):
            TeamArbiter.create_team(db, "Alpha", 3, "GHOST")

    def test_creator_already_in_a_team(self, db, register):
        register("E1")
        TeamArbiter.create_team(db, "Alpha", 3, "E1")
        with pytest.raises(AlreadyAssignedError):
            TeamArbiter.create_team(db, "Beta", 3, "E1")

    def test_rejected_when_lobby_locked(self, db, two_teams, register):
        TeamArbiter.lock_lobby(db, [])
        register("E9")
        with pytest.raises(LobbyClosedError):
            TeamArbiter.create_team(db, "Late", 2, "E9")


class TestJoinTeam:
    def test_join_appends_in_order(self, db, register):
        register("E1", "E2", "E3")
        team = TeamArbiter.create_team(db, "Alpha", 3, "E1")
        TeamArbiter.join_team(db, team.id, "E2")
        team = TeamArbiter.join_team(db, team.id, "E3")

        assert team.member_ids == ["E1", "E2", "E3"]
        assert team.is_full

    def test_rejoin_same_team_is_noop(self, db, register):
        register("E1", "E2")
        team = TeamArbiter.create_team(db, "Alpha", 3, "E1")
        TeamArbiter.join_team(db, team.id, "E2")
        version = TeamArbiter.get_team(db, team.id).version

        team = TeamArbiter.join_team(db, team.id, "E2")

        assert team.member_ids == ["E1", "E2"]
        assert team.version == version
        assert db.query(TeamMember).filter(TeamMember.enrollment_id == "E2").count() == 1

    def test_full_team_raises_capacity(self, db, register):
        register("E1", "E2", "E3")
        team = TeamArbiter.create_team(db, "Pair", 2, "E1")
        TeamArbiter.join_team(db, team.id, "E2")

        with pytest.raises(CapacityError) as exc_info:
            TeamArbiter.join_team(db, team.id, "E3")
        assert exc_info.value.status_code == 409
        assert TeamArbiter.team_of(db, "E3") is None

    def test_member_of_other_team(self, db, two_teams):
        alpha_id, beta_id = two_teams
        with pytest.raises(AlreadyAssignedError):
            TeamArbiter.join_team(db, beta_id, "E1")

    def test_unknown_team(self, db, register):
        register("E1")
        with pytest.raises(TeamNotFound):
            TeamArbiter.join_team(db, "missing", "E1")

    def test_unregistered_participant(self, db, register):
        register("E1")
        team = TeamArbiter.create_team(db, "Alpha", 3, "E1")
        with pytest.raises(ParticipantNotFound):
            TeamArbiter.join_team(db, team.id, "GHOST")

    def test_lobby_closed_checked_first(self, db, two_teams):
        alpha_id, _ = two_teams
        TeamArbiter.lock_lobby(db, [])
        with pytest.raises(LobbyClosedError):
            TeamArbiter.join_team(db, "missing", "GHOST")


class TestAdminEdits:
    def test_remove_member(self, db, two_teams):
        alpha_id, _ = two_teams
        team = TeamArbiter.remove_member(db, alpha_id, "E2")
        assert team.member_ids == ["E1"]
        assert TeamArbiter.team_of(db, "E2") is None

    def test_remove_member_is_idempotent(self, db, two_teams):
        alpha_id, _ = two_teams
        TeamArbiter.remove_member(db, alpha_id, "E2")
        team = TeamArbiter.remove_member(db, alpha_id, "E2")
        assert team.member_ids == ["E1"]
        assert TeamArbiter.remove_member(db, "missing", "E2") is None

    def test_removed_member_can_join_elsewhere(self, db, two_teams, register):
        alpha_id, _ = two_teams
        register("E5")
        solo = TeamArbiter.create_team(db, "Solo", 2, "E5")
        TeamArbiter.remove_member(db, alpha_id, "E2")
        team = TeamArbiter.join_team(db, solo.id, "E2")
        assert team.member_ids == ["E5", "E2"]

    def test_update_team(self, db, two_teams):
        alpha_id, _ = two_teams
        team = TeamArbiter.update_team(db, alpha_id, name="Alpha Prime", max_size=4)
        assert team.name == "Alpha Prime"
        assert team.max_size == 4

    def test_update_cannot_shrink_below_members(self, db, two_teams):
        alpha_id, _ = two_teams
        with pytest.raises(InvalidSizeError):
            TeamArbiter.update_team(db, alpha_id, max_size=1)
        assert TeamArbiter.get_team(db, alpha_id).max_size == 2

    def test_delete_team_unassigns_members(self, db, two_teams):
        alpha_id, beta_id = two_teams
        assert TeamArbiter.delete_team(db, alpha_id) is True

        assert [t.id for t in TeamArbiter.list_teams(db)] == [beta_id]
        assert TeamArbiter.team_of(db, "E1") is None
        assert TeamArbiter.team_of(db, "E2") is None
        assert TeamArbiter.delete_team(db, alpha_id) is False

    def test_delete_leading_team_withdraws_its_bid(self, db, live_auction, published):
        alpha_id, beta_id = live_auction
        AuctionEngine.select_item(db, 1)
        AuctionEngine.submit_bid(db, alpha_id)
        AuctionEngine.submit_bid(db, beta_id)
        AuctionEngine.submit_bid(db, alpha_id)
        published.clear()

        TeamArbiter.delete_team(db, beta_id)
        assert get_auction_state(db).highest_bidder_team_id == alpha_id

        TeamArbiter.delete_team(db, alpha_id)

        state = get_auction_state(db)
        assert state.status == AuctionStatus.ACTIVE
        assert state.highest_bidder_team_id is None
        assert state.current_bid == CATALOGUE[0]["basePrice"]
        documents = [m["data"]["document"] for m in published if m["event"] == "document"]
        assert "auction/current" in documents

    def test_delete_buyer_keeps_item_sold(self, db, live_auction):
        alpha_id, _ = live_auction
        AuctionEngine.select_item(db, 1)
        AuctionEngine.submit_bid(db, alpha_id)
        AuctionEngine.resolve(db)

        TeamArbiter.delete_team(db, alpha_id)

        db.expire_all()
        item = db.get(CatalogueEntry, 1)
        assert item.status == ItemStatus.SOLD
        assert item.sold_to_team_id is None
        assert get_auction_state(db).highest_bidder_team_id is None


class TestLobbyLock:
    def test_lock_and_reopen(self, db, two_teams):
        TeamArbiter.lock_lobby(db, ["E1", "E2", "E3", "E4"])
        assert get_lobby(db).status == LobbyStatus.LOCKED

        TeamArbiter.reopen_lobby(db)
        assert get_lobby(db).status == LobbyStatus.OPEN

    def test_unassigned_online_participants_block_lock(self, db, two_teams, register):
        register("E5", "E6")
        with pytest.raises(UnassignedParticipantsError) as exc_info:
            TeamArbiter.lock_lobby(db, ["E1", "E5", "E6"])
        assert exc_info.value.count == 2
        assert get_lobby(db).status == LobbyStatus.OPEN

    def test_offline_or_unregistered_do_not_block(self, db, two_teams, register):
        register("E5")
        TeamArbiter.lock_lobby(db, ["E1", "NOT-REGISTERED"])
        assert get_lobby(db).status == LobbyStatus.LOCKED

    def test_empty_team_blocks_lock(self, db, two_teams):
        alpha_id, _ = two_teams
        TeamArbiter.remove_member(db, alpha_id, "E1")
        TeamArbiter.remove_member(db, alpha_id, "E2")
        with pytest.raises(EmptyTeamError, match="Alpha"):
            TeamArbiter.lock_lobby(db, [])

    def test_lock_twice_is_invalid(self, db, two_teams):
        TeamArbiter.lock_lobby(db, [])
        with pytest.raises(InvalidStateTransition):
            TeamArbiter.lock_lobby(db, [])
