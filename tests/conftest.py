"""
Pytest configuration and fixtures for multifactor-risk tests

Provides in-memory stand-ins for the REDCap API, the FHIR server and the
pie store, plus a PostgreSQL container for pie store integration tests.
"""
import copy
import json
import os
import threading
from itertools import count
from typing import Any, Generator
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from multifactor_risk.clients.fhir_client import FHIRClient
from multifactor_risk.clients.redcap_client import REDCapClient
from multifactor_risk.core.config import REDCAP_RISK_SERVICE_CONFIG
from multifactor_risk.core.models import Pie, Record
from multifactor_risk.sync.reconcile import RiskAssessmentReconciler
from multifactor_risk.sync.refresh import RefreshOrchestrator

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")

FHIR_BASE_URL = "http://fhir.test"
REDCAP_URL = "http://redcap.test/api/"
BASIS_PIE_URL = "http://riskservice.test/pies"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that exercise a full refresh cycle"
    )


def load_fixture(name: str) -> Any:
    with open(os.path.join(FIXTURES_DIR, name)) as f:
        return json.load(f)


# =======================
# FAKE HTTP COLLABORATORS
# =======================

class FakeResponse:
    """Just enough of requests.Response for the clients."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        if text is not None:
            self.content = text.encode()
        elif payload is not None:
            self.content = json.dumps(payload).encode()
        else:
            self.content = b""

    def json(self):
        if self._payload is None:
            return json.loads(self.content)
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeREDCap:
    """Stands in for a requests.Session pointed at the REDCap API."""

    def __init__(self, records: list[dict[str, Any]]):
        self.records = records
        self.requests: list[dict[str, Any]] = []
        self.response: FakeResponse | None = None
        self.error: Exception | None = None

    def post(self, url, data=None, timeout=None, **kwargs):
        self.requests.append({"url": url, "data": data, "timeout": timeout})
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return FakeResponse(200, copy.deepcopy(self.records))


class FakeFHIRServer:
    """
    In-memory FHIR server honouring the parts of the API the service uses.

    - GET /Patient?identifier=X pages results page_size at a time
    - POST <base> processes a transaction bundle: conditional DELETE of
      RiskAssessment by patient and method, then POST creates
    """

    def __init__(self, patients: list[dict[str, Any]], page_size: int = 1):
        self.base_url = FHIR_BASE_URL
        self.patients = patients
        self.page_size = page_size
        self.risk_assessments: dict[str, dict[str, Any]] = {}
        self.transactions: list[dict[str, Any]] = []
        self.search_requests: list[str] = []
        self.unavailable = False
        self.reject_transactions = False
        self._ids = count(1)
        self._lock = threading.Lock()

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        if self.unavailable:
            raise requests.ConnectionError("FHIR server unavailable")

        parts = urlsplit(url)
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}
        query.update(params or {})
        self.search_requests.append(url)

        if parts.path != "/Patient":
            return FakeResponse(404, {"resourceType": "OperationOutcome"})

        identifier = query.get("identifier")
        matches = [
            p for p in self.patients
            if any(i.get("value") == identifier for i in p.get("identifier", []))
        ]
        page = int(query.get("_page", "0"))
        start = page * self.page_size
        page_matches = matches[start:start + self.page_size]

        bundle = {
            "resourceType": "Bundle",
            "type": "searchset",
            "total": len(matches),
            "entry": [{"resource": p, "search": {"mode": "match"}} for p in page_matches],
            "link": [{"relation": "self", "url": url}],
        }
        if start + self.page_size < len(matches):
            bundle["link"].append({
                "relation": "next",
                "url": f"{self.base_url}/Patient?identifier={identifier}&_page={page + 1}",
            })
        return FakeResponse(200, bundle)

    def post(self, url, json=None, headers=None, timeout=None, **kwargs):
        if self.unavailable:
            raise requests.ConnectionError("FHIR server unavailable")
        if self.reject_transactions:
            return FakeResponse(500, {"resourceType": "OperationOutcome"})
        assert url.rstrip("/") == self.base_url
        assert json["type"] == "transaction"

        with self._lock:
            self.transactions.append(copy.deepcopy(json))
            response_entries = []
            for entry in json["entry"]:
                request = entry["request"]
                if request["method"] == "DELETE":
                    self._conditional_delete(request["url"])
                    response_entries.append({"response": {"status": "204"}})
                elif request["method"] == "POST":
                    resource = copy.deepcopy(entry["resource"])
                    resource["id"] = str(next(self._ids))
                    self.risk_assessments[resource["id"]] = resource
                    response_entries.append({"response": {"status": "201", "location": f"RiskAssessment/{resource['id']}"}})

        return FakeResponse(200, {"resourceType": "Bundle", "type": "transaction-response", "entry": response_entries})

    def _conditional_delete(self, url: str) -> None:
        parts = urlsplit(url)
        assert parts.path == "RiskAssessment"
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}
        system, _, code = query["method"].partition("|")
        subject = f"Patient/{query['patient']}"

        for ra_id, ra in list(self.risk_assessments.items()):
            codings = ra.get("method", {}).get("coding", [])
            if ra["subject"]["reference"] == subject and any(
                c["system"] == system and c["code"] == code for c in codings
            ):
                del self.risk_assessments[ra_id]

    def assessments_for(self, patient_id: str) -> list[dict[str, Any]]:
        found = [
            ra for ra in self.risk_assessments.values()
            if ra["subject"]["reference"] == f"Patient/{patient_id}"
        ]
        return sorted(found, key=lambda ra: ra["date"])


class InMemoryPieStore:
    """Pie store with the same interface as PieStore, backed by a dict."""

    def __init__(self):
        self.pies: dict[str, Pie] = {}
        self.fail_saves = False

    def save_pies(self, pies) -> int:
        if self.fail_saves:
            raise ValueError("pie store is read-only")
        for pie in pies:
            self.pies[pie.id] = pie
        return len(pies)

    def get_pie(self, pie_id: str) -> Pie | None:
        return self.pies.get(pie_id)

    def delete_pies_except(self, patient_url: str, keep_ids) -> int:
        keep = set(keep_ids)
        doomed = [pid for pid, pie in self.pies.items() if pie.patient == patient_url and pid not in keep]
        for pid in doomed:
            del self.pies[pid]
        return len(doomed)


# =======================
# FIXTURES
# =======================

@pytest.fixture
def example_records() -> list[dict[str, Any]]:
    """Raw REDCap export rows: two for study 1, one for study "a"."""
    return load_fixture("example_records.json")


@pytest.fixture
def records(example_records) -> list[Record]:
    return [Record.model_validate(r) for r in example_records]


@pytest.fixture
def patients() -> list[dict[str, Any]]:
    bundle = load_fixture("patients_bundle.json")
    return [entry["resource"] for entry in bundle["entry"]]


@pytest.fixture
def fhir_server(patients) -> FakeFHIRServer:
    return FakeFHIRServer(patients)


@pytest.fixture
def redcap_server(example_records) -> FakeREDCap:
    return FakeREDCap(example_records)


@pytest.fixture
def fhir_client(fhir_server) -> FHIRClient:
    return FHIRClient(FHIR_BASE_URL, timeout=5, session=fhir_server)


@pytest.fixture
def redcap_client(redcap_server) -> REDCapClient:
    return REDCapClient(REDCAP_URL, "123456789", timeout=5, session=redcap_server)


@pytest.fixture
def pie_store() -> InMemoryPieStore:
    return InMemoryPieStore()


@pytest.fixture
def reconciler(fhir_client, pie_store) -> RiskAssessmentReconciler:
    return RiskAssessmentReconciler(
        fhir_client=fhir_client,
        pie_store=pie_store,
        basis_pie_url=BASIS_PIE_URL,
        config=REDCAP_RISK_SERVICE_CONFIG,
    )


@pytest.fixture
def orchestrator(redcap_client, fhir_client, reconciler) -> RefreshOrchestrator:
    # A private lock keeps tests independent of the process-wide one
    return RefreshOrchestrator(redcap_client, fhir_client, reconciler, lock=threading.Lock())


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Start PostgreSQL container for pie store integration tests

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_riskservice",
        password="test_password",
        dbname="test_riskservice",
    ) as postgres:
        yield postgres


@pytest.fixture
def db_pool(postgres_container):
    """Open a connection pool against the container with an empty pie table."""
    from multifactor_risk.store.connection import DatabaseConnectionPool
    from multifactor_risk.store.pie_store import PieStore

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_riskservice",
        user="test_riskservice",
        password="test_password",
    )
    pool.open()
    PieStore(pool).create_schema()
    pool.execute_command("TRUNCATE TABLE pie")

    yield pool

    pool.close()
