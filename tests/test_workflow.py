"""Test end-to-end workflow: checklist → upload → process → auto-fill → alerts."""

import pytest

from helpers import INT_TEXT, UNKNOWN_TEXT, W2_TEXT


async def _upload(client, client_id, name, content):
    files = {"file": (name, content.encode(), "text/plain")}
    response = await client.post(f"/clients/{client_id}/documents", files=files)
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_complete_workflow(client):
    """
    Flow:
    1. Establish a checklist (W-2 and 1099-INT required)
    2. Upload and process both documents
    3. Checklist items complete automatically and the session reaches 100%
    4. Form 1040 is filled from both documents
    """
    response = await client.post("/clients/client-1/checklist", json={
        "items": [
            {"document_type": "W-2", "category": "income", "priority": "high"},
            {"document_type": "1099-INT", "category": "income"},
        ]
    })
    assert response.status_code == 201
    assert [item["document_type"] for item in response.json()] == ["W-2", "1099-INT"]

    response = await client.get("/clients/client-1/session")
    assert response.json()["status"] == "not_started"

    w2 = await _upload(client, "client-1", "w2.txt", W2_TEXT)
    assert w2["processing_status"] == "pending"
    assert w2["file_extension"] == "txt"

    response = await client.post(f"/documents/{w2['id']}/process")
    assert response.status_code == 200
    result = response.json()
    assert result["status"] == "completed"
    assert [stage["stage"] for stage in result["stages"]] == ["ocr", "analysis", "autofill"]
    assert result["stages"][1]["output"]["document_type"] == "W-2"

    response = await client.get("/clients/client-1/session")
    assert response.json()["progress_percentage"] == 50
    assert response.json()["status"] == "in_progress"

    interest = await _upload(client, "client-1", "1099int.txt", INT_TEXT)
    response = await client.post(f"/documents/{interest['id']}/process", json={"priority": "high"})
    assert response.json()["status"] == "completed"

    response = await client.get("/clients/client-1/session")
    assert response.json()["progress_percentage"] == 100
    assert response.json()["status"] == "completed"

    response = await client.get("/clients/client-1/checklist")
    assert all(item["is_completed"] for item in response.json())
    linked = {item["document_type"]: item["document_id"] for item in response.json()}
    assert linked == {"W-2": w2["id"], "1099-INT": interest["id"]}

    response = await client.get("/clients/client-1/tax-forms")
    forms = response.json()
    assert len(forms) == 1
    assert forms[0]["form_type"] == "Form-1040"
    assert forms[0]["fields"]["line_1a_wages"]["value"] == 65000.0
    assert forms[0]["fields"]["line_2b_taxable_interest"]["value"] == 1250.5
    assert sorted(forms[0]["source_documents"]) == sorted([w2["id"], interest["id"]])

    response = await client.get(f"/documents/{w2['id']}")
    document = response.json()
    assert document["processing_status"] == "completed"
    assert document["document_type"] == "W-2"
    assert document["processing_attempts"] == 1

    response = await client.get(f"/documents/{interest['id']}/results")
    assert [row["priority"] for row in response.json()] == ["high", "high", "high"]


@pytest.mark.asyncio
async def test_status_endpoint(client):
    document = await _upload(client, "client-1", "w2.txt", W2_TEXT)

    response = await client.get(f"/documents/{document['id']}/status")
    assert response.json()["status"] == "pending"
    assert response.json()["progress"] == 0

    await client.post(f"/documents/{document['id']}/process")
    response = await client.get(f"/documents/{document['id']}/status")
    status = response.json()
    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["source"] == "live"


@pytest.mark.asyncio
async def test_background_processing_returns_202(client, orchestrator):
    document = await _upload(client, "client-1", "w2.txt", W2_TEXT)

    response = await client.post(f"/documents/{document['id']}/process", params={"background": "true"})
    assert response.status_code == 202
    assert response.json()["source"] == "live"

    await orchestrator.drain()
    response = await client.get(f"/documents/{document['id']}")
    assert response.json()["processing_status"] == "completed"


@pytest.mark.asyncio
async def test_process_unknown_document_returns_404(client):
    response = await client.post("/documents/does-not-exist/process")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reprocess_conflict_and_force(client):
    document = await _upload(client, "client-1", "w2.txt", W2_TEXT)
    await client.post(f"/documents/{document['id']}/process")

    response = await client.post(f"/documents/{document['id']}/reprocess")
    assert response.status_code == 409

    response = await client.post(f"/documents/{document['id']}/reprocess", params={"force": "true"})
    assert response.status_code == 200
    assert response.json()["attempt"] == 2

    response = await client.get(f"/documents/{document['id']}/results")
    assert len(response.json()) == 6


@pytest.mark.asyncio
async def test_checklist_link_and_unlink(client):
    response = await client.post("/clients/client-1/checklist", json={"items": [{"document_type": "receipt"}]})
    item_id = response.json()[0]["id"]
    document = await _upload(client, "client-1", "note.txt", UNKNOWN_TEXT)

    response = await client.patch(f"/checklist-items/{item_id}",
                                  json={"is_completed": True, "document_id": document["id"]})
    assert response.status_code == 409

    await client.post(f"/documents/{document['id']}/process")
    response = await client.patch(f"/checklist-items/{item_id}",
                                  json={"is_completed": True, "document_id": document["id"]})
    assert response.status_code == 200
    assert response.json()["item"]["document_id"] == document["id"]
    assert response.json()["session"]["progress_percentage"] == 100

    response = await client.delete(f"/documents/{document['id']}")
    assert response.status_code == 409

    response = await client.delete(f"/documents/{document['id']}", params={"unlink": "true"})
    assert response.status_code == 204

    response = await client.get("/clients/client-1/checklist")
    item = response.json()[0]
    assert not item["is_completed"]
    assert item["reopen_count"] == 1
    response = await client.get("/clients/client-1/session")
    assert response.json()["progress_percentage"] == 0


@pytest.mark.asyncio
async def test_template_checklist_and_progress_report(client):
    response = await client.post("/clients/client-1/checklist", json={"template": "self_employed"})
    assert response.status_code == 201
    assert response.json()[0]["priority"] == "high"

    response = await client.post("/clients/client-1/checklist", json={"template": "no-such-template"})
    assert response.status_code == 400

    response = await client.post("/clients/client-1/checklist", json={})
    assert response.status_code == 422

    response = await client.get("/clients/client-1/progress")
    report = response.json()
    assert report["session"]["total_required"] == 4
    assert report["total_items"] == 6
    assert report["by_priority"]["high"]["total"] == 3
    assert [entry["document_type"] for entry in report["due_soon"]] == ["engagement_letter"]

    response = await client.patch("/clients/client-1/session", json={"notes": "Prefers email"})
    assert response.json()["notes"] == "Prefers email"

    response = await client.post("/clients/client-1/reminders")
    assert response.json() == {"client_id": "client-1", "reminders_sent": 1}


@pytest.mark.asyncio
async def test_offset_datetimes_are_stored_as_utc(client):
    response = await client.post("/clients/client-1/checklist", json={
        "template": "individual",
        "items": [{"document_type": "K-1", "priority": "high", "due_date": "2030-01-01T00:00:00Z"}],
    })
    assert response.status_code == 201
    items = {item["document_type"]: item for item in response.json()}
    assert items["K-1"]["due_date"] == "2030-01-01T00:00:00"
    assert [item["document_type"] for item in response.json()][:4] == ["engagement_letter", "id", "W-2", "K-1"]

    response = await client.patch("/clients/client-1/session", json={"deadline": "2030-04-15T12:00:00-04:00"})
    assert response.status_code == 200
    assert response.json()["deadline"] == "2030-04-15T16:00:00"


@pytest.mark.asyncio
async def test_alert_flow(client):
    await client.post("/clients/client-1/checklist", json={"items": [{"document_type": "W-2", "priority": "high"}]})

    response = await client.post("/alerts/evaluate", params={"client_id": "client-1"})
    summary = response.json()
    assert summary["created"] == 1
    alert = summary["alerts"][0]
    assert alert["type"] == "missing_document"
    assert alert["severity"] == "warning"

    response = await client.post(f"/alerts/{alert['id']}/acknowledge", json={"user": "preparer"})
    assert response.json()["status"] == "acknowledged"

    response = await client.post(f"/alerts/{alert['id']}/resolve", json={"note": ""})
    assert response.status_code == 400

    response = await client.post(f"/alerts/{alert['id']}/resolve", json={"note": "Requested by phone"})
    assert response.json()["status"] == "resolved"

    response = await client.post(f"/alerts/{alert['id']}/resolve", json={"note": "again"})
    assert response.status_code == 409

    response = await client.get("/alerts", params={"client_id": "client-1"})
    assert response.json() == []


@pytest.mark.asyncio
async def test_review_resolves_quality_alert(client):
    document = await _upload(client, "client-1", "note.txt", UNKNOWN_TEXT)
    await client.post(f"/documents/{document['id']}/process")

    response = await client.get("/alerts", params={"client_id": "client-1"})
    alerts = response.json()
    assert [alert["type"] for alert in alerts] == ["quality_issue"]

    response = await client.post(f"/documents/{document['id']}/review", json={"reviewer": "reviewer-1"})
    assert response.status_code == 200
    assert response.json()["reviewed_by"] == "reviewer-1"

    response = await client.get("/alerts", params={"client_id": "client-1"})
    assert response.json() == []


@pytest.mark.asyncio
async def test_review_requires_processed_document(client):
    document = await _upload(client, "client-1", "w2.txt", W2_TEXT)

    response = await client.post(f"/documents/{document['id']}/review", json={"reviewer": "reviewer-1"})

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
