from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from ingestion.schema import TranslationRecord
from utils.errors import PersistenceError


def make_record(reference="Berakhot 2a", translated="From when do we recite Shema in the evening?", cost=0.002):
    return TranslationRecord(
        reference=reference,
        source_text="מֵאֵימָתַי קוֹרִין אֶת שְׁמַע בְּעַרְבִית",
        translated_text=translated,
        model_identifier="test/model",
        cost=cost,
        created_at=datetime.now(timezone.utc),
        metadata={"user_id": "tester"},
    )


def test_save_and_get(store):
    assert store.get("Berakhot 2a") is None

    store.save(make_record())
    record = store.get("Berakhot 2a")

    assert record.translated_text == "From when do we recite Shema in the evening?"
    assert record.model_identifier == "test/model"
    assert record.cost == pytest.approx(0.002)
    assert record.metadata == {"user_id": "tester"}
    assert record.created_at is not None


def test_save_overwrites_same_reference(store):
    store.save(make_record(translated="first"))
    store.save(make_record(translated="second"))

    assert store.count() == 1
    assert store.get("Berakhot 2a").translated_text == "second"


def test_get_many(store):
    store.save(make_record("Berakhot 2a:1"))
    store.save(make_record("Berakhot 2a:3"))

    records = store.get_many(["Berakhot 2a:1", "Berakhot 2a:2", "Berakhot 2a:3"])

    assert sorted(records) == ["Berakhot 2a:1", "Berakhot 2a:3"]
    assert store.get_many([]) == {}
    assert store.count() == 2


def test_database_errors_become_persistence_errors(store, monkeypatch):
    def broken_session():
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "_sessions", broken_session)

    with pytest.raises(PersistenceError):
        store.save(make_record())
    with pytest.raises(PersistenceError):
        store.get("Berakhot 2a")
    assert store.ping() is False


def test_ping(store):
    assert store.ping() is True
