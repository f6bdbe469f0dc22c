"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import tempfile
from pathlib import Path

# Set environment variables BEFORE any imports that might use them
TEST_DATA_DIR = tempfile.mkdtemp()

os.environ["CARDS_FILE"] = os.path.join(TEST_DATA_DIR, "cards.json")
os.environ["CLIENT_CACHE_FILE"] = os.path.join(TEST_DATA_DIR, "board_cache.json")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("AMBASSADORS_FILE", None)

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def cards_path(tmp_path):
    """Path of a card file that does not exist yet."""
    return tmp_path / "data" / "cards.json"


@pytest.fixture
def store(cards_path):
    """File-backed card store on an empty board."""
    from services.card_store import CardStore

    store = CardStore.open(cards_path)
    yield store
    store.close()


@pytest.fixture
def events(store):
    """Every event the store emits, in order."""
    received = []
    store.add_listener(received.append)
    return received


@pytest.fixture
def roster_path(tmp_path):
    path = tmp_path / "ambassadors.txt"
    path.write_text("# campus ambassadors\nMaria Lopez\n\nJohn Smith\n", encoding="utf-8")
    return path


@pytest.fixture
def app(store, cards_path, roster_path):
    """FastAPI app wired to the test store."""
    from api.main import create_app
    from core.config import AppConfig, BoardConfig, StorageConfig

    config = AppConfig(
        storage=StorageConfig(cards_path=str(cards_path)),
        board=BoardConfig(ambassadors_path=str(roster_path)),
        log_level="WARNING",
    )
    return create_app(store=store, config=config)


@pytest.fixture
def client(app):
    """Create test client."""
    from fastapi.testclient import TestClient

    return TestClient(app)


def make_row(trip_id="T1", status="TX Approved", accepted="5", ready="0", **extra):
    """Raw CSV row with canonical headers."""
    row = {
        "Trip ID": trip_id,
        "Traveler": extra.pop("traveler", "Ana Costa"),
        "USA Dest": extra.pop("usa_dest", "Miami, FL"),
        "Items Accepted": accepted,
        "Items Ready to process": ready,
        "Trip Verification Status": status,
        "Ship Bundle": extra.pop("ship_bundle", "2026-03-10"),
        "Total Bundle Weight": extra.pop("weight", "12.5"),
    }
    row.update(extra)
    return row


@pytest.fixture
def row_factory():
    return make_row
