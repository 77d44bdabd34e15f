"""
Summary projection and CapabilityStatement augmentation tests
"""
from types import SimpleNamespace
from unittest.mock import Mock

from fhirwall.fhir.capability import augment, modifiers_for
from fhirwall.fhir.summary import SummaryProjector


class StubDefinitions:
    """Element definitions where only 'status' and 'code' are mandatory."""

    def min_cardinality(self, resource_type, element):
        return 1 if element in ("status", "code") else 0


def observation():
    return {
        "resourceType": "Observation",
        "id": "obs1",
        "meta": {"versionId": "2"},
        "text": {"status": "generated", "div": "<div>120 mmHg</div>"},
        "status": "final",
        "code": {"text": "Blood pressure"},
        "subject": {"reference": "Patient/p1"},
        "note": [{"text": "seated"}],
    }


def subsetted_tags(resource):
    return [tag for tag in resource["meta"].get("security", []) if tag["code"] == "SUBSETTED"]

# ============================================================================
# SUMMARY PROJECTION
# ============================================================================

def test_summary_data_strips_text():
    """_summary=data keeps everything except the narrative"""
    projector = SummaryProjector(StubDefinitions())
    resource = projector.project("Observation", "obs1", "data", observation, Mock())

    assert "text" not in resource
    assert resource["id"] == "obs1"
    assert resource["resourceType"] == "Observation"
    assert resource["meta"]["versionId"] == "2"
    assert resource["subject"] == {"reference": "Patient/p1"}
    assert len(subsetted_tags(resource)) == 1

def test_summary_text_keeps_mandatory_elements():
    """_summary=text keeps text, id, meta, resourceType and mandatory elements"""
    projector = SummaryProjector(StubDefinitions())
    resource = projector.project("Observation", "obs1", "text", observation, Mock())

    assert set(resource) == {"resourceType", "id", "meta", "text", "status", "code"}
    assert len(subsetted_tags(resource)) == 1

def test_summary_true_uses_single_search_match():
    """_summary=true takes the store's summary view when exactly one resource matches"""
    summary_view = {"resourceType": "Observation", "id": "obs1", "status": "final"}
    search = Mock(return_value={"resourceType": "Bundle", "total": 1, "entry": [{"resource": summary_view}]})
    fetch = Mock()

    resource = SummaryProjector(StubDefinitions()).project("Observation", "obs1", "true", fetch, search)

    search.assert_called_once_with("_id=obs1&_summary=true")
    fetch.assert_not_called()
    assert resource["status"] == "final"
    assert len(subsetted_tags(resource)) == 1

def test_summary_true_falls_back_to_fetch():
    """No single match: plain fetch, still tagged"""
    search = Mock(return_value={"resourceType": "Bundle", "total": 0, "entry": []})
    resource = SummaryProjector(StubDefinitions()).project("Observation", "obs1", "true", observation, search)
    assert resource["note"] == [{"text": "seated"}]
    assert len(subsetted_tags(resource)) == 1

def test_summary_appends_to_existing_security():
    def fetch():
        resource = observation()
        resource["meta"]["security"] = [{"system": "urn:x", "code": "R"}]
        return resource

    resource = SummaryProjector(StubDefinitions()).project("Observation", "obs1", "data", fetch, Mock())
    assert [tag["code"] for tag in resource["meta"]["security"]] == ["R", "SUBSETTED"]

def test_summary_creates_meta_when_missing():
    def fetch():
        return {"resourceType": "Basic", "id": "b1", "text": {"div": "x"}}

    resource = SummaryProjector(StubDefinitions()).project("Basic", "b1", "data", fetch, Mock())
    assert len(subsetted_tags(resource)) == 1

def test_no_summary_is_plain_fetch():
    """Absent or false _summary: no projection, no tag"""
    projector = SummaryProjector(StubDefinitions())
    for mode in (None, "false"):
        resource = projector.project("Observation", "obs1", mode, observation, Mock())
        assert "text" in resource
        assert "security" not in resource["meta"]

def test_summary_passes_outcomes_through():
    """A not-found outcome is neither projected nor tagged"""
    outcome = {"resourceType": "OperationOutcome", "issue": [{"severity": "error"}]}
    resource = SummaryProjector(StubDefinitions()).project("Observation", "x", "text", lambda: dict(outcome), Mock())
    assert resource == outcome

# ============================================================================
# CAPABILITY STATEMENT
# ============================================================================

def settings(**overrides):
    values = dict(capability_status="active", capability_experimental=False, allow_multiple_deletes=False)
    values.update(overrides)
    return SimpleNamespace(**values)


def statement():
    return {
        "resourceType": "CapabilityStatement",
        "rest": [{"mode": "server", "resource": [{"type": "Patient"}, {"type": "Observation"}]}]
    }

SEARCH_PARAMETERS = [
    {"resourceType": "SearchParameter", "name": "family", "url": "http://hl7.org/fhir/SearchParameter/individual-family",
     "type": "string", "base": ["Patient", "Practitioner"]},
    {"resourceType": "SearchParameter", "name": "subject", "url": "http://hl7.org/fhir/SearchParameter/Observation-subject",
     "type": "reference", "base": "Observation", "target": ["Patient", "Group"]},
    {"resourceType": "SearchParameter", "name": "code-value-quantity", "url": "http://hl7.org/fhir/SearchParameter/Observation-code-value-quantity",
     "type": "composite", "base": ["Observation"]},
    {"resourceType": "SearchParameter", "name": "url", "url": "http://hl7.org/fhir/SearchParameter/ValueSet-url",
     "type": "uri", "base": ["ValueSet"]},
]


def by_type(result):
    return {entry["type"]: entry for entry in result["rest"][0]["resource"]}


def test_modifiers_for():
    assert modifiers_for("string") == ["missing", "exact", "contains"]
    assert modifiers_for("uri") == ["missing", "below"]
    assert modifiers_for("token") == ["missing"]
    assert modifiers_for("composite") == []

def test_augment_adds_search_params():
    resources = by_type(augment(statement(), SEARCH_PARAMETERS, settings()))

    family = resources["Patient"]["searchParam"][0]
    assert family["name"] == "family"
    assert family["definition"] == "http://hl7.org/fhir/SearchParameter/individual-family"
    assert family["type"] == "string"
    assert family["modifier"] == ["missing", "exact", "contains"]

    observation_params = {param["name"]: param for param in resources["Observation"]["searchParam"]}
    assert observation_params["subject"]["target"] == ["Patient", "Group"]
    assert observation_params["subject"]["modifier"] == ["missing"]
    assert "modifier" not in observation_params["code-value-quantity"]

def test_augment_ignores_unlisted_bases():
    """Search parameters for types without a capability entry are skipped"""
    resources = by_type(augment(statement(), SEARCH_PARAMETERS, settings()))
    assert "ValueSet" not in resources
    assert len(resources["Patient"]["searchParam"]) == 1

def test_augment_stamps_deployment_facts():
    result = augment(statement(), [], settings())
    assert result["format"] == ["xml", "json"]
    assert result["status"] == "active"
    assert result["experimental"] is False
    patient = by_type(result)["Patient"]
    assert patient["conditionalCreate"] is True
    assert patient["conditionalUpdate"] is True
    assert patient["conditionalDelete"] == "single"

def test_augment_multiple_deletes():
    result = augment(statement(), [], settings(allow_multiple_deletes=True))
    assert by_type(result)["Observation"]["conditionalDelete"] == "multiple"
