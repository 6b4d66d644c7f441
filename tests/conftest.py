"""
Shared test fixtures for the Quarry test suite.
"""

import pytest

from quarry.db import Database
from quarry.db import engine
from quarry.models.entity import EntityRegistry
from quarry.models.signals import LIFECYCLE_SIGNALS, post_migrate, pre_migrate


@pytest.fixture(autouse=True)
def reset_registry():
    """Reset EntityRegistry, the default database and signals between tests."""
    old_entities = EntityRegistry._entities.copy()
    old_db = EntityRegistry._db
    old_default = engine._default_database
    yield
    EntityRegistry._entities = old_entities
    EntityRegistry._db = old_db
    engine._default_database = old_default
    for signal in (*LIFECYCLE_SIGNALS.values(), pre_migrate, post_migrate):
        signal.clear()


@pytest.fixture
def db():
    """A connected in-memory SQLite database installed as the process default."""
    database = Database("sqlite:///:memory:")
    database.connect()
    engine.set_database(database)
    yield database
    engine.set_database(None)
    database.disconnect()


@pytest.fixture
def file_db(tmp_path):
    """A SQLite database backed by a file in ``tmp_path``."""
    database = Database(f"sqlite:///{tmp_path / 'quarry.sqlite3'}")
    database.connect()
    yield database
    database.disconnect()
