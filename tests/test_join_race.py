"""
Tests for race condition prevention when many participants join at once.

Each contender runs in its own thread with its own session, the same way
concurrent websocket connections reach the arbiter through the threadpool.
"""

import threading

import pytest

from core.auction_engine import AuctionEngine
from core.exceptions import AlreadyHighestBidderError, CapacityError, StaleBidError
from core.team_arbiter import TeamArbiter
from database import SessionLocal
from models import TeamMember


def _race(worker, contenders):
    """Run worker(contender) for every contender behind a shared start barrier."""
    barrier = threading.Barrier(len(contenders))
    results = {}
    results_lock = threading.Lock()

    def run(contender):
        session = SessionLocal()
        try:
            barrier.wait()
            try:
                outcome = worker(session, contender)
            except Exception as e:
                outcome = e
            with results_lock:
                results[contender] = outcome
        finally:
            session.close()

    threads = [threading.Thread(target=run, args=(c,)) for c in contenders]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_last_slot_goes_to_exactly_one(db, register):
    """Verify N concurrent joins for the last slot produce one member and N-1 CapacityError."""
    contenders = [f"C{i}" for i in range(6)]
    register("OWNER", *contenders)
    team = TeamArbiter.create_team(db, "Pair", 2, "OWNER")
    team_id = team.id

    results = _race(lambda s, c: TeamArbiter.join_team(s, team_id, c), contenders)

    winners = [c for c, r in results.items() if not isinstance(r, Exception)]
    losers = [r for r in results.values() if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == len(contenders) - 1
    assert all(isinstance(e, CapacityError) for e in losers)

    db.expire_all()
    members = db.query(TeamMember).filter(TeamMember.team_id == team_id).all()
    assert sorted(m.enrollment_id for m in members) == sorted(["OWNER", winners[0]])


def test_concurrent_joins_never_exceed_capacity(db, register):
    contenders = [f"C{i}" for i in range(8)]
    register("OWNER", *contenders)
    team = TeamArbiter.create_team(db, "Five", 5, "OWNER")
    team_id = team.id

    results = _race(lambda s, c: TeamArbiter.join_team(s, team_id, c), contenders)

    accepted = [c for c, r in results.items() if not isinstance(r, Exception)]
    assert len(accepted) == 4
    db.expire_all()
    assert len(TeamArbiter.get_team(db, team_id).members) == 5


@pytest.mark.parametrize("attempts", [2, 4])
def test_simultaneous_bids_at_same_price(db, live_auction, attempts):
    """Only one bid placed against a given currentBid is accepted."""
    alpha_id, beta_id = live_auction
    state = AuctionEngine.select_item(db, 1)
    seen_bid = state.current_bid

    bidders = [alpha_id, beta_id] * (attempts // 2)
    keyed = [f"{team_id}#{i}" for i, team_id in enumerate(bidders)]

    def bid(session, key):
        return AuctionEngine.submit_bid(session, key.split("#")[0], expected_bid=seen_bid)

    results = _race(bid, keyed)

    accepted = [r for r in results.values() if not isinstance(r, Exception)]
    rejected = [r for r in results.values() if isinstance(r, Exception)]
    assert len(accepted) == 1
    assert all(isinstance(e, (StaleBidError, AlreadyHighestBidderError)) for e in rejected)
