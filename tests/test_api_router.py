import pytest
import json
from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import patch

from membership_import.api.routes import router
from membership_import.models.mapping import (
    FieldMapping,
    ImportJobInfo,
    ImportOptions,
    ImportOutcome,
    ImportStatus,
    ImportSummary,
    PreviewResult,
    PreviewRow,
)
from membership_import.services.field_catalog import FieldCatalog

# Initialize the app and attach routes to mock a real server and client.
app = FastAPI()
app.include_router(router)

client = TestClient(app)

REQUEST = {
    "rows": [["5", "2024-01-01", "42"]],
    "mapping": [
        {"entity": "Membership", "name": "membership_type_id"},
        {"entity": "Membership", "name": "start_date"},
        {"entity": "Membership", "name": "contact_id"},
    ],
}

# --- Fixtures for Mocking ---

@pytest.fixture
def mock_import_service():
    # Replaces the import service in the routes file with a fake object (mock).
    with patch("membership_import.api.routes.import_service") as mock:
        mock.field_catalog = FieldCatalog()
        yield mock

@pytest.fixture
def mock_stores():
    # Replaces the database layer (jobs and row outcomes).
    with patch("membership_import.api.routes.stores") as mock:
        yield mock

@pytest.fixture
def mock_csv_loader():
    with patch("membership_import.api.routes.csv_loader") as mock:
        yield mock

def _job(job_id="job-1", status="completed"):
    return ImportJobInfo(
        id=job_id,
        status=status,
        contact_type="Individual",
        options=ImportOptions(),
        mapping=[FieldMapping(entity="Membership", name="id")],
        summary=ImportSummary(job_id=job_id, total_rows=1, imported=1),
    )

# --- Field Catalog ---

def test_get_fields(mock_import_service):
    """
    Goal: The field list includes the "do not import" entry and the contact fields.
    """
    response = client.get("/fields", params={"contact_type": "Organization"})

    assert response.status_code == 200
    names = [f["name"] for f in response.json()["fields"]]
    assert names[0] == ""
    assert "organization_name" in names
    assert "first_name" not in names

def test_get_required_fields(mock_import_service):
    response = client.get("/required-fields")

    assert response.status_code == 200
    assert response.json() == {"match": [["id"]], "create": ["membership_type_id"]}

# --- Preview & Import ---

def test_preview_import(mock_import_service):
    mock_import_service.preview_import.return_value = PreviewResult(
        is_valid=False, rows=[PreviewRow(row_number=1, errors=["Membership Type"])]
    )

    response = client.post("/imports/preview", json=REQUEST)

    assert response.status_code == 200
    assert response.json()["rows"][0]["errors"] == ["Membership Type"]

    # Verify: Options default when the request omits them
    args = mock_import_service.preview_import.call_args.args
    assert args[2] == ImportOptions()

def test_create_import_returns_job_at_once(mock_import_service):
    """
    Goal: The import endpoint answers with the new job and leaves the rows to
    a background task.
    """
    mock_import_service.create_import.return_value = _job(status="draft")

    response = client.post("/imports", json=REQUEST, params={"workers": 2})

    assert response.status_code == 202
    assert response.json()["id"] == "job-1"
    assert response.json()["status"] == "draft"

    # Verify: The background task ran the rows for that job
    mock_import_service.run_import.assert_called_once_with("job-1", REQUEST["rows"], workers=2)

def test_create_import_empty_mapping(mock_import_service):
    response = client.post("/imports", json={"rows": [["1"]], "mapping": []})

    assert response.status_code == 400
    mock_import_service.create_import.assert_not_called()
    mock_import_service.run_import.assert_not_called()

def test_create_import_invalid_options(mock_import_service):
    payload = dict(REQUEST, options={"on_duplicate": "merge"})

    response = client.post("/imports", json=payload)

    assert response.status_code == 422

def test_start_then_cancel_import(mock_import_service):
    """
    Goal: The job id returned by the import endpoint can be used to cancel it.
    """
    mock_import_service.create_import.return_value = _job(status="draft")

    job_id = client.post("/imports", json=REQUEST).json()["id"]
    response = client.post(f"/imports/{job_id}/cancel")

    assert response.status_code == 200
    assert response.json() == {"job_id": "job-1", "status": "cancelled"}
    mock_import_service.cancel_import.assert_called_once_with("job-1")

def test_upload_import(mock_import_service, mock_csv_loader):
    """
    Goal: An uploaded CSV is saved, read into rows, deleted, and imported with the given mapping.
    """
    mock_csv_loader.save_uploaded_file.return_value = "file_123"
    mock_csv_loader.read_rows.return_value = [["5", "2024-01-01", "42"]]
    mock_import_service.create_import.return_value = _job(status="draft")

    response = client.post(
        "/imports/upload",
        files={"file": ("members.csv", b"type,start,contact\n5,2024-01-01,42\n", "text/csv")},
        data={
            "mapping_json": json.dumps(REQUEST["mapping"]),
            "options_json": json.dumps({"on_duplicate": "skip"}),
        },
    )

    assert response.status_code == 202
    mock_csv_loader.read_rows.assert_called_once_with("file_123", has_header=True, delimiter=",", encoding="utf-8")
    mock_csv_loader.delete_file.assert_called_once_with("file_123")
    mapping, options = mock_import_service.create_import.call_args.args
    assert mapping[0].name == "membership_type_id"
    assert options.on_duplicate == "skip"
    mock_import_service.run_import.assert_called_once_with("job-1", [["5", "2024-01-01", "42"]])

def test_upload_import_bad_mapping(mock_import_service, mock_csv_loader):
    response = client.post(
        "/imports/upload",
        files={"file": ("members.csv", b"a\n1\n", "text/csv")},
        data={"mapping_json": "not json"},
    )

    assert response.status_code == 400
    mock_csv_loader.save_uploaded_file.assert_not_called()

def test_upload_import_unreadable_file(mock_import_service, mock_csv_loader):
    """
    Goal: A file pandas cannot read is still removed from the upload directory.
    """
    mock_csv_loader.save_uploaded_file.return_value = "file_123"
    mock_csv_loader.read_rows.side_effect = ValueError("Could not read CSV file: boom")

    response = client.post(
        "/imports/upload",
        files={"file": ("members.csv", b"a\n1\n", "text/csv")},
        data={"mapping_json": "[]"},
    )

    assert response.status_code == 400
    assert "Could not read CSV file" in response.json()["detail"]
    mock_csv_loader.delete_file.assert_called_once_with("file_123")
    mock_import_service.run_import.assert_not_called()

# --- Job Control ---

def test_resume_import(mock_import_service):
    mock_import_service.resume_import.return_value = _job(status="queued")

    response = client.post("/imports/job-1/resume", json=[["5", "2024-01-01", "42"]])

    assert response.status_code == 202
    assert response.json()["status"] == "queued"
    mock_import_service.run_import.assert_called_once_with("job-1", [["5", "2024-01-01", "42"]])

def test_resume_completed_job(mock_import_service):
    mock_import_service.resume_import.side_effect = ValueError("Import job job-1 is already completed")

    response = client.post("/imports/job-1/resume", json=[])

    assert response.status_code == 409
    mock_import_service.run_import.assert_not_called()

def test_resume_unknown_job(mock_import_service):
    mock_import_service.resume_import.side_effect = KeyError("Import job with id nope not found")

    response = client.post("/imports/nope/resume", json=[])

    assert response.status_code == 404

def test_cancel_unknown_job(mock_import_service):
    mock_import_service.cancel_import.side_effect = KeyError("Import job with id nope not found")

    response = client.post("/imports/nope/cancel")

    assert response.status_code == 404

def test_cancel_import(mock_import_service):
    response = client.post("/imports/job-1/cancel")

    assert response.status_code == 200
    assert response.json() == {"job_id": "job-1", "status": "cancelled"}

def test_get_import(mock_stores):
    mock_stores.get_job.return_value = _job()

    response = client.get("/imports/job-1")

    assert response.status_code == 200
    assert response.json()["summary"]["imported"] == 1

def test_get_import_rows(mock_stores):
    """
    Goal: Per-row outcomes are listed for an existing job.
    """
    mock_stores.get_job.return_value = _job()
    mock_stores.list_outcomes.return_value = [
        ImportOutcome(row_number=1, status=ImportStatus.IMPORTED, created_id=1001),
        ImportOutcome(row_number=2, status=ImportStatus.ERROR, message="No membership found with id 77"),
    ]

    response = client.get("/imports/job-1/rows")

    assert response.status_code == 200
    rows = response.json()["rows"]
    assert rows[1]["status"] == "ERROR"
    assert rows[1]["message"] == "No membership found with id 77"

def test_get_import_rows_unknown_job(mock_stores):
    mock_stores.get_job.side_effect = KeyError("Import job with id nope not found")

    response = client.get("/imports/nope/rows")

    assert response.status_code == 404
