"""Test fixtures and utilities."""

import io
from dataclasses import dataclass
from pathlib import Path

import pytest
from PIL import Image

from campus_lostfound.config import Config
from campus_lostfound.schemas import Actor
from campus_lostfound.state_store import StateStore
from campus_lostfound.storage import FileStorage, StagedUpload


@dataclass
class Seed:
    """Users and items seeded into a fresh store."""

    admin_id: int
    security_id: int
    finder_id: int
    claimant_id: int
    other_id: int
    found_item_id: int
    lost_item_id: int

    @property
    def admin(self) -> Actor:
        return Actor(user_id=self.admin_id, role="admin")

    @property
    def security(self) -> Actor:
        return Actor(user_id=self.security_id, role="security")

    @property
    def finder(self) -> Actor:
        return Actor(user_id=self.finder_id)

    @property
    def claimant(self) -> Actor:
        return Actor(user_id=self.claimant_id)

    @property
    def other(self) -> Actor:
        return Actor(user_id=self.other_id)


def make_image_bytes(fmt: str = "PNG", size: tuple[int, int] = (64, 48)) -> bytes:
    """Encode a solid-color image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


def stage(files: FileStorage, name: str, data: bytes, mime_type: str = "image/png") -> StagedUpload:
    """Write bytes into the staging area as if uploaded."""
    return files.stage_upload(name, [data], mime_type)


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path."""
    return tmp_path / "state.db"


@pytest.fixture
def config(tmp_path, temp_db) -> Config:
    """Default config pointed at temporary paths."""
    config = Config()
    config.state_db_path = temp_db
    config.storage.upload_dir = tmp_path / "uploads"
    return config


@pytest.fixture
def store(config) -> StateStore:
    return StateStore(config.state_db_path)


@pytest.fixture
def files(config) -> FileStorage:
    return FileStorage(config.storage)


@pytest.fixture
def seed(store) -> Seed:
    """Admin, security, finder, claimant and an unrelated user, plus one matching pair."""
    admin_id = store.create_user("admin@campus.edu", "Ada", "Admin", role="admin")
    security_id = store.create_user("guard@campus.edu", "Sam", "Guard", role="security")
    finder_id = store.create_user("finder@campus.edu", "Fiona", "Finder")
    claimant_id = store.create_user("juan@campus.edu", "Juan", "Dela Cruz")
    other_id = store.create_user("other@campus.edu", "Olive", "Other")

    found_item_id = store.create_found_item(
        finder_id,
        "Black leather wallet",
        "Wallet with a student ID card, found on a bench",
        category_id=1,
        found_location_id=3,
        found_date="2025-11-20",
        unique_identifiers="Student ID 2021-00123",
    )
    lost_item_id = store.create_lost_item(
        claimant_id,
        "Black wallet",
        "Lost my leather wallet near the library",
        category_id=1,
        last_seen_location_id=3,
        last_seen_date="2025-11-18",
        unique_identifiers="student id 202100123",
    )

    return Seed(
        admin_id=admin_id,
        security_id=security_id,
        finder_id=finder_id,
        claimant_id=claimant_id,
        other_id=other_id,
        found_item_id=found_item_id,
        lost_item_id=lost_item_id,
    )
