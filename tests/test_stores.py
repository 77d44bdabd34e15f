"""
Resource store tests

1. SqlStore against a SQLite database (versioning, search, history)
2. FhirbaseStore against a mocked session (payloads and unpacking)
3. StoreFactory backend selection
"""
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from fhirwall.database import Base
from fhirwall.fhir.outcomes import status_hint
from fhirwall.models import StoredResource
from fhirwall.store.factory import StoreFactory
from fhirwall.store.fhirbase import FhirbaseStore
from fhirwall.store.sql import SqlStore, matches

# Test database (SQLite in /tmp for container compatibility)
SQLALCHEMY_DATABASE_URL = "sqlite:////tmp/test_fhirwall_store.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)


@pytest.fixture
def store():
    """SqlStore on a clean table"""
    db = TestingSessionLocal()
    db.query(StoredResource).delete()
    db.commit()
    try:
        yield SqlStore(db, known_resources=frozenset({"Patient", "Observation"}))
    finally:
        db.close()


def patient(family="Smith", identifier="123", **extra):
    resource = {
        "resourceType": "Patient",
        "identifier": [{"system": "urn:mrn", "value": identifier}],
        "name": [{"family": family, "given": ["Ann"]}],
        "text": {"status": "generated", "div": "<div>Ann</div>"},
    }
    resource.update(extra)
    return resource

# ============================================================================
# SQL STORE: CRUD AND VERSIONING
# ============================================================================

def test_create_assigns_id_and_version(store):
    created = store.create("Patient", patient())
    assert created["id"]
    assert created["meta"]["versionId"] == "1"
    assert created["meta"]["lastUpdated"].endswith("Z")

def test_create_ignores_client_id(store):
    created = store.create("Patient", patient(id="mine"))
    assert created["id"] != "mine"

def test_create_rejects_type_mismatch(store):
    result = store.create("Observation", patient())
    assert status_hint(result) == 400

def test_read_and_vread(store):
    created = store.create("Patient", patient())
    updated = store.update("Patient", created["id"], patient(family="Jones"))

    assert store.read("Patient", created["id"])["name"][0]["family"] == "Jones"
    assert store.vread("Patient", created["id"], "1")["name"][0]["family"] == "Smith"
    assert updated["meta"]["versionId"] == "2"
    assert status_hint(store.vread("Patient", created["id"], "9")) == 404

def test_read_missing(store):
    assert status_hint(store.read("Patient", "nope")) == 404

def test_update_creates_at_given_id(store):
    """Update of an unknown id creates version 1 with that id"""
    created = store.update("Patient", "fixed-id", patient())
    assert created["id"] == "fixed-id"
    assert created["meta"]["versionId"] == "1"

def test_update_rejects_id_mismatch(store):
    result = store.update("Patient", "a", patient(id="b"))
    assert status_hint(result) == 400

def test_update_if_match(store):
    """Expected version must equal the current one"""
    created = store.create("Patient", patient())
    assert status_hint(store.update("Patient", created["id"], patient(), if_match="7")) == 412
    assert store.update("Patient", created["id"], patient(), if_match="1")["meta"]["versionId"] == "2"

def test_delete_lifecycle(store):
    """Delete returns the deleted resource, then gone, unknown ids not found"""
    created = store.create("Patient", patient())

    deleted = store.delete("Patient", created["id"])
    assert deleted["id"] == created["id"]
    assert deleted["meta"]["versionId"] == "1"

    assert status_hint(store.read("Patient", created["id"])) == 410
    assert status_hint(store.delete("Patient", created["id"])) == 410
    assert status_hint(store.delete("Patient", "never")) == 404

def test_last_version_id_skips_tombstones(store):
    created = store.create("Patient", patient())
    store.update("Patient", created["id"], patient(family="Jones"))
    store.delete("Patient", created["id"])
    assert store.last_version_id("Patient", created["id"]) == "2"
    assert store.last_version_id("Patient", "never") is None

def test_update_after_delete_revives(store):
    created = store.create("Patient", patient())
    store.delete("Patient", created["id"])
    revived = store.update("Patient", created["id"], patient())
    assert revived["meta"]["versionId"] == "3"

# ============================================================================
# SQL STORE: SEARCH
# ============================================================================

def test_search_by_token_and_string(store):
    store.create("Patient", patient(family="Smith", identifier="123"))
    store.create("Patient", patient(family="Smithers", identifier="456"))
    store.create("Patient", patient(family="Jones", identifier="789"))

    assert store.search("Patient", "name=smith")["total"] == 2
    assert store.search("Patient", "name:exact=Smith")["total"] == 1
    assert store.search("Patient", "name:contains=ither")["total"] == 1
    assert store.search("Patient", "identifier=urn:mrn|456")["total"] == 1
    assert store.search("Patient", "identifier=123,789")["total"] == 2
    assert store.search("Patient", "")["total"] == 3

def test_search_missing_modifier(store):
    store.create("Patient", patient())
    store.create("Patient", {"resourceType": "Patient", "gender": "female"})
    assert store.search("Patient", "name:missing=true")["total"] == 1
    assert store.search("Patient", "name:missing=false")["total"] == 1

def test_search_by_id(store):
    created = store.create("Patient", patient())
    store.create("Patient", patient())
    bundle = store.search("Patient", f"_id={created['id']}")
    assert bundle["total"] == 1
    assert bundle["entry"][0]["resource"]["id"] == created["id"]

def test_search_paging(store):
    for number in range(5):
        store.create("Patient", patient(identifier=str(number)))

    first = store.search("Patient", "_count=2")
    assert first["total"] == 5
    assert len(first["entry"]) == 2
    assert any(link["relation"] == "next" for link in first["link"])

    last = store.search("Patient", "_count=2&_page=3")
    assert len(last["entry"]) == 1
    assert not any(link["relation"] == "next" for link in last["link"])

def test_search_invalid_count(store):
    assert status_hint(store.search("Patient", "_count=lots")) == 400

def test_search_summary(store):
    store.create("Patient", patient())
    summary = store.search("Patient", "_summary=true")
    assert "text" not in summary["entry"][0]["resource"]
    count = store.search("Patient", "_summary=count")
    assert count["total"] == 1
    assert "entry" not in count

def test_search_excludes_deleted(store):
    created = store.create("Patient", patient())
    store.delete("Patient", created["id"])
    assert store.search("Patient", "")["total"] == 0

def test_matches_helper():
    resource = patient()
    assert matches(resource, "name", "ann")
    assert not matches(resource, "gender", "male")
    assert matches(resource, "gender:missing", "true")

# ============================================================================
# SQL STORE: HISTORY AND CONFORMANCE
# ============================================================================

def test_history_newest_first_with_tombstone(store):
    created = store.create("Patient", patient())
    store.update("Patient", created["id"], patient(family="Jones"))
    store.delete("Patient", created["id"])

    bundle = store.history("Patient", created["id"])
    assert bundle["type"] == "history"
    assert bundle["total"] == 3
    assert "resource" not in bundle["entry"][0]
    assert bundle["entry"][0]["request"]["method"] == "DELETE"
    assert bundle["entry"][1]["resource"]["meta"]["versionId"] == "2"
    assert bundle["entry"][2]["request"]["method"] == "POST"

def test_history_missing(store):
    assert status_hint(store.history("Patient", "never")) == 404

def test_conformance_lists_known_resources(store):
    statement = store.conformance()
    types = [entry["type"] for entry in statement["rest"][0]["resource"]]
    assert types == ["Observation", "Patient"]

def test_list_search_parameters(store):
    store.create("SearchParameter", {"resourceType": "SearchParameter", "name": "family",
                                     "type": "string", "base": ["Patient"]})
    bundle = store.list_search_parameters()
    assert bundle["total"] == 1

# ============================================================================
# FHIRBASE STORE
# ============================================================================

def fhirbase_session(result):
    db = MagicMock()
    db.execute.return_value.first.return_value = (result,)
    return db


def called_with(db):
    sql, params = db.execute.call_args[0]
    return str(sql), json.loads(params["payload"])


def test_fhirbase_read():
    db = fhirbase_session('{"resourceType": "Patient", "id": "1"}')
    resource = FhirbaseStore(db).read("Patient", "1")

    sql, payload = called_with(db)
    assert "fhir_read_resource" in sql
    assert payload == {"resourceType": "Patient", "id": "1"}
    assert resource == {"resourceType": "Patient", "id": "1"}

def test_fhirbase_accepts_decoded_json():
    """Drivers that decode jsonb hand back dicts"""
    db = fhirbase_session({"resourceType": "Bundle", "total": 0})
    assert FhirbaseStore(db).search("Patient", "name=x")["total"] == 0
    sql, payload = called_with(db)
    assert "fhir_search" in sql
    assert payload == {"resourceType": "Patient", "queryString": "name=x"}

def test_fhirbase_update_passes_if_match():
    db = fhirbase_session('{"resourceType": "Patient", "id": "1"}')
    FhirbaseStore(db).update("Patient", "1", {"resourceType": "Patient"}, if_match="4")
    sql, payload = called_with(db)
    assert "fhir_update_resource" in sql
    assert payload == {"resource": {"resourceType": "Patient", "id": "1"}, "ifMatch": "4"}

def test_fhirbase_create_and_conformance():
    db = fhirbase_session('{"resourceType": "Patient", "id": "9"}')
    store = FhirbaseStore(db)
    store.create("Patient", {"resourceType": "Patient"})
    assert "fhir_create_resource" in called_with(db)[0]
    store.conformance()
    assert called_with(db)[1] == {"default": "values"}

def test_fhirbase_last_version_id():
    db = MagicMock()
    db.execute.return_value.fetchall.return_value = [(4,)]
    assert FhirbaseStore(db).last_version_id("Patient", "1") == "4"
    sql, params = db.execute.call_args[0]
    assert '"patient_history"' in str(sql)
    assert params == {"resource_id": "1"}

# ============================================================================
# STORE FACTORY
# ============================================================================

def factory_context(backend):
    return SimpleNamespace(
        settings=SimpleNamespace(store_backend=backend, fhir_version="4.0.1", app_name="test"),
        known_resources=frozenset({"Patient"})
    )


def test_factory_backends():
    assert isinstance(StoreFactory.create(MagicMock(), factory_context("sql")), SqlStore)
    assert isinstance(StoreFactory.create(MagicMock(), factory_context("FHIRBASE")), FhirbaseStore)
    assert StoreFactory.create(MagicMock(), factory_context("fhirbase")).get_store_name() == "fhirbase"

def test_factory_unknown_backend():
    with pytest.raises(ValueError, match="Unsupported store backend"):
        StoreFactory.create(MagicMock(), factory_context("mongo"))
