"""
Tests for commit-time change capture and the broadcaster's stale filter.
"""

import pytest

from core.auction_engine import AuctionEngine
from core.broadcaster import Broadcaster
from core.exceptions import CapacityError
from core.sync import document_message
from core.team_arbiter import TeamArbiter


def _documents(messages):
    return {
        m["data"]["document"]: m["data"]
        for m in messages
        if m["event"] == "document"
    }


def _events(messages, name):
    return [m for m in messages if m["event"] == name]


def test_create_team_publishes_document_and_team_list(db, register, published):
    register("E1")
    team = TeamArbiter.create_team(db, "Alpha", 3, "E1")

    documents = _documents(published)
    assert documents[f"teams/{team.id}"]["version"] == 1
    assert documents[f"teams/{team.id}"]["data"]["members"] == ["E1"]

    [teams_updated] = _events(published, "teamsUpdated")
    assert teams_updated["data"]["locked"] is False
    assert [t["name"] for t in teams_updated["data"]["teams"]] == ["Alpha"]


def test_rejected_operation_publishes_nothing(db, register, published):
    register("E1", "E2")
    team = TeamArbiter.create_team(db, "Solo", 1, "E1")
    published.clear()

    with pytest.raises(CapacityError):
        TeamArbiter.join_team(db, team.id, "E2")

    assert published == []


def test_versions_strictly_increase(db, register, published):
    register("E1", "E2", "E3")
    team = TeamArbiter.create_team(db, "Alpha", 3, "E1")
    TeamArbiter.join_team(db, team.id, "E2")
    TeamArbiter.join_team(db, team.id, "E3")

    versions = [
        m["data"]["version"] for m in published
        if m["event"] == "document" and m["data"]["document"] == f"teams/{team.id}"
    ]
    assert versions == [1, 2, 3]


def test_delete_publishes_tombstone(db, two_teams, published):
    alpha_id, beta_id = two_teams
    published.clear()

    TeamArbiter.delete_team(db, alpha_id)

    documents = _documents(published)
    assert documents[f"teams/{alpha_id}"]["data"] is None
    [teams_updated] = _events(published, "teamsUpdated")
    assert [t["id"] for t in teams_updated["data"]["teams"]] == [beta_id]


def test_lock_marks_team_list_locked(db, two_teams, published):
    published.clear()
    TeamArbiter.lock_lobby(db, [])

    assert _documents(published)["settings/lobby"]["data"]["status"] == "LOCKED"
    assert _events(published, "teamsUpdated")[0]["data"]["locked"] is True


def test_bid_publishes_bid_and_bidder_together(db, live_auction, published):
    alpha_id, _ = live_auction
    AuctionEngine.select_item(db, 1)
    published.clear()

    AuctionEngine.submit_bid(db, alpha_id)

    [auction] = [m for m in published if m["event"] == "document"]
    data = auction["data"]["data"]
    assert auction["data"]["document"] == "auction/current"
    assert data["currentBid"] > data["player"]["basePrice"]
    assert data["highestBidder"] == alpha_id
    assert data["highestBidderName"] == "Alpha"


def test_start_publishes_starting_before_live(db, two_teams, published):
    TeamArbiter.lock_lobby(db, [])
    published.clear()

    AuctionEngine.start_auction(db)

    statuses = [
        m["data"]["data"]["status"] for m in published
        if m["event"] == "document" and m["data"]["document"] == "settings/lobby"
    ]
    assert statuses == ["STARTING", "LIVE"]


class TestBroadcasterStaleFilter:
    def test_drops_older_or_equal_versions(self):
        broadcaster = Broadcaster()
        assert not broadcaster.is_stale(document_message("teams/a", 2, {}))
        assert broadcaster.is_stale(document_message("teams/a", 2, {}))
        assert broadcaster.is_stale(document_message("teams/a", 1, {}))
        assert not broadcaster.is_stale(document_message("teams/a", 3, {}))

    def test_documents_are_tracked_independently(self):
        broadcaster = Broadcaster()
        assert not broadcaster.is_stale(document_message("teams/a", 5, {}))
        assert not broadcaster.is_stale(document_message("teams/b", 1, {}))

    def test_events_are_never_stale(self):
        broadcaster = Broadcaster()
        message = {"event": "teamsUpdated", "data": {"teams": [], "locked": False}}
        assert not broadcaster.is_stale(message)
        assert not broadcaster.is_stale(message)

    def test_publish_without_loop_is_dropped(self):
        broadcaster = Broadcaster()
        broadcaster.publish([document_message("teams/a", 1, {})])
        assert broadcaster.connections == {}
