import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import ConfigError, EnvelopeExists, EnvelopeNotFound, InvalidAmount
from schemas import EnvelopeUpdateIn
from services import EnvelopeService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_create_starts_with_allocation_as_balance() -> None:
    session = make_session()

    envelope = EnvelopeService(session).create(
        "  Groceries ", category="food", allocation=250.0, rollover=True
    )

    assert envelope.name == "Groceries"
    assert envelope.balance == 250.0
    assert envelope.category == "food"
    assert envelope.rollover is True
    assert envelope.is_individual is False
    assert envelope.user_id is None


def test_create_validates_inputs() -> None:
    session = make_session()
    service = EnvelopeService(session)

    with pytest.raises(ConfigError):
        service.create("   ")
    with pytest.raises(InvalidAmount):
        service.create("Groceries", allocation=-1.0)
    with pytest.raises(InvalidAmount):
        service.create("Groceries", allocation=float("nan"))
    with pytest.raises(ConfigError):
        service.create("Pocket", is_individual=True)
    with pytest.raises(ConfigError):
        service.create("Pocket", user_id="alice", is_individual=False)


def test_duplicate_active_envelope_is_rejected() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Groceries", allocation=100.0)

    with pytest.raises(EnvelopeExists):
        service.create("Groceries", allocation=50.0)

    assert len(service.list_active()) == 1


def test_individual_envelopes_share_a_name_across_users() -> None:
    session = make_session()
    service = EnvelopeService(session)
    alice = service.create("Pocket", user_id="alice", allocation=20.0)
    bob = service.create("Pocket", user_id="bob", allocation=30.0)
    shared = service.create("Pocket", allocation=5.0)

    assert service.get("Pocket", "alice").id == alice.id
    assert service.get("Pocket", "bob").id == bob.id
    assert service.get("Pocket", "carol").id == shared.id
    assert service.get("Pocket").id == shared.id


def test_individual_envelope_hidden_from_other_users() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Hobby", user_id="alice", allocation=20.0)

    with pytest.raises(EnvelopeNotFound):
        service.get("Hobby", "bob")


def test_soft_delete_then_recreate_reenables_row() -> None:
    session = make_session()
    service = EnvelopeService(session)
    original = service.create("Groceries", allocation=100.0)
    TransactionService(session, overdraft_policy="reject").spend(
        "Groceries", 60.0, "market", "alice"
    )

    assert service.soft_delete("Groceries", "alice") is True
    assert service.list_active() == []
    with pytest.raises(EnvelopeNotFound):
        service.get("Groceries")

    revived = service.create("Groceries", category="food", allocation=150.0)

    assert revived.id == original.id
    assert revived.balance == 150.0
    assert revived.category == "food"
    assert revived.is_deleted is False


def test_soft_delete_missing_returns_false() -> None:
    session = make_session()

    assert EnvelopeService(session).soft_delete("Nothing", "alice") is False


def test_soft_delete_cannot_remove_other_users_envelope(caplog) -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Hobby", user_id="alice", allocation=20.0)

    with caplog.at_level("WARNING"):
        assert service.soft_delete("Hobby", "bob") is False

    assert "envelope_delete_denied" in caplog.text
    assert "owner=alice" in caplog.text
    assert service.get("Hobby", "alice").is_deleted is False


def test_soft_delete_prefers_shared_over_other_users_envelope() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Fun", user_id="alice", allocation=20.0)
    service.create("Fun", allocation=50.0)

    assert service.soft_delete("Fun", "bob") is True

    assert service.get("Fun", "alice").user_id == "alice"
    with pytest.raises(EnvelopeNotFound):
        service.get("Fun", "bob")


def test_update_changes_attributes_but_not_balance() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Groceries", allocation=100.0)

    updated = service.update(
        "Groceries", None, EnvelopeUpdateIn(allocation=300.0, rollover=True)
    )

    assert updated.allocation == 300.0
    assert updated.rollover is True
    assert updated.balance == 100.0
    assert updated.category == "uncategorized"


def test_update_requires_an_attribute() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Groceries", allocation=100.0)

    with pytest.raises(ConfigError):
        service.update("Groceries", None, EnvelopeUpdateIn())
    with pytest.raises(InvalidAmount):
        service.update("Groceries", None, EnvelopeUpdateIn(allocation=-5.0))
    with pytest.raises(EnvelopeNotFound):
        service.update("Rent", None, EnvelopeUpdateIn(rollover=True))


def test_update_rejects_blank_category() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Groceries", category="food", allocation=100.0)

    with pytest.raises(ValidationError):
        EnvelopeUpdateIn(category="   ")

    updated = service.update("Groceries", None, EnvelopeUpdateIn(category="  groceries "))
    assert updated.category == "groceries"


def test_categories_are_distinct_and_sorted() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Groceries", category="food")
    service.create("Restaurants", category="food")
    service.create("Rent", category="housing")

    assert service.categories() == ["food", "housing"]


def test_suggest_names_prefix_then_fuzzy() -> None:
    session = make_session()
    service = EnvelopeService(session)
    service.create("Groceries")
    service.create("Gifts")
    service.create("Hobby", user_id="alice")

    assert service.suggest_names("bob", "g") == ["Gifts", "Groceries"]
    assert service.suggest_names("alice", "hob") == ["Hobby"]
    assert service.suggest_names("bob", "hob") == []
    assert service.suggest_names("bob", "grx") == ["Groceries"]
