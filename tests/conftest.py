"""
Pytest fixtures for tests.

The database URL and clock switch are read once when `database` is imported,
so they are set here before any project module is loaded. Every test gets
freshly created tables on a throwaway SQLite file.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="auction-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["CLOCK_ENABLED"] = "false"
os.environ["ADMIN_TOKEN"] = "test-admin"

import pytest  # noqa: E402

from core import sync  # noqa: E402
from core.auction_engine import AuctionEngine  # noqa: E402
from core.presence import presence  # noqa: E402
from core.team_arbiter import TeamArbiter  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from models import Participant  # noqa: E402


# =============================================================================
# CENTRALIZED CONSTANTS
# =============================================================================

ADMIN_TOKEN = "test-admin"
"""Admin token configured through the environment above."""

CATALOGUE = [
    {"id": 1, "name": "Opening Batter", "phase": "BATTERS", "basePrice": 1_000_000,
     "role": "Batsman", "importanceScore": 9},
    {"id": 2, "name": "Middle Order", "phase": "BATTERS", "basePrice": 800_000,
     "role": "Batsman", "importanceScore": 6},
    {"id": 3, "name": "Fast Bowler", "phase": "BOWLERS", "basePrice": 1_200_000,
     "role": "Bowler", "importanceScore": 8},
    {"id": 1001, "name": "Lucky Bat", "phase": "ACCESSORIES", "basePrice": 500_000,
     "importanceScore": 3},
]
"""Small catalogue covering every phase."""


@pytest.fixture(autouse=True)
def clean_state():
    """
    Reset process-global state around each test.

    Tables are recreated, the presence registry is emptied and no publisher
    is installed, so one test's broadcasts never leak into the next.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    presence.clear()
    sync.set_publisher(None)
    yield
    sync.set_publisher(None)
    presence.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def published():
    """Collect every message the sync layer publishes after commit."""
    messages = []
    sync.set_publisher(messages.extend)
    yield messages
    sync.set_publisher(None)


@pytest.fixture
def register(db):
    """Register participants by enrollment id."""

    def _register(*enrollment_ids):
        for enrollment_id in enrollment_ids:
            db.add(Participant(enrollment_id=enrollment_id, name=f"Student {enrollment_id}"))
        db.commit()

    return _register


@pytest.fixture
def two_teams(db, register):
    """Two teams of two, lobby still OPEN."""
    register("E1", "E2", "E3", "E4")
    alpha = TeamArbiter.create_team(db, "Alpha", 2, "E1")
    TeamArbiter.join_team(db, alpha.id, "E2")
    beta = TeamArbiter.create_team(db, "Beta", 2, "E3")
    TeamArbiter.join_team(db, beta.id, "E4")
    return alpha.id, beta.id


@pytest.fixture
def live_auction(db, two_teams):
    """Catalogue loaded, lobby locked and auction LIVE in the BATTERS phase."""
    AuctionEngine.load_catalogue(db, CATALOGUE)
    TeamArbiter.lock_lobby(db, [])
    AuctionEngine.start_auction(db)
    return two_teams
