import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import ConfigError
from schemas import EnvelopeSeed
from seed import load_envelope_seeds, seed_envelopes
from services import EnvelopeService


CONFIG = """
[[envelopes]]
name = "Groceries"
category = "food"
allocation = 400.0
rollover = false

[[envelopes]]
name = "Pocket Money"
allocation = 50
is_individual = true
rollover = true
"""


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_load_envelope_seeds(tmp_path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)

    seeds = load_envelope_seeds(path)

    assert [s.name for s in seeds] == ["Groceries", "Pocket Money"]
    assert seeds[0].category == "food"
    assert seeds[1].category == "uncategorized"
    assert seeds[1].allocation == 50.0
    assert seeds[1].is_individual is True


def test_load_rejects_bad_files(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_envelope_seeds(tmp_path / "missing.toml")

    broken = tmp_path / "broken.toml"
    broken.write_text("[[envelopes]\nname = ")
    with pytest.raises(ConfigError):
        load_envelope_seeds(broken)

    negative = tmp_path / "negative.toml"
    negative.write_text('[[envelopes]]\nname = "Rent"\nallocation = -1\n')
    with pytest.raises(ConfigError):
        load_envelope_seeds(negative)

    unknown = tmp_path / "unknown.toml"
    unknown.write_text('[[envelopes]]\nname = "Rent"\ncolour = "red"\n')
    with pytest.raises(ConfigError):
        load_envelope_seeds(unknown)


def test_seed_creates_shared_and_per_user_envelopes(tmp_path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)
    session = make_session()

    outcomes = seed_envelopes(session, load_envelope_seeds(path), ["alice", "bob"])

    assert outcomes == [
        "created: Groceries (Shared)",
        "created: Pocket Money (alice)",
        "created: Pocket Money (bob)",
    ]
    service = EnvelopeService(session)
    assert service.get("Pocket Money", "bob").balance == 50.0
    assert service.get("Groceries").allocation == 400.0


def test_seed_is_repeatable_and_reenables_deleted(tmp_path) -> None:
    session = make_session()
    seeds = [EnvelopeSeed(name="Groceries", allocation=400.0)]
    seed_envelopes(session, seeds, [])
    EnvelopeService(session).soft_delete("Groceries", None)

    assert seed_envelopes(session, seeds, []) == ["reenabled: Groceries (Shared)"]
    assert seed_envelopes(session, seeds, []) == ["skipped: Groceries (Shared)"]
    assert len(EnvelopeService(session).list_active()) == 1


def test_individual_seeds_need_users() -> None:
    session = make_session()

    with pytest.raises(ConfigError):
        seed_envelopes(session, [EnvelopeSeed(name="Pocket", is_individual=True)], [])
