import io
import json
import os


def _establishment(client, name="Route Works"):
    resp = client.post("/api/establishments", json={"name": name})
    assert resp.status_code == 201
    return resp.get_json()["id"]


def _csv_upload(text, filename="incidents.csv"):
    return (io.BytesIO(text.encode("utf-8")), filename)


def test_create_and_list_establishments(client):
    est_id = _establishment(client)
    listed = client.get("/api/establishments").get_json()
    assert [e["id"] for e in listed] == [est_id]


def test_validation_error_is_400(client):
    resp = client.post("/api/establishments", json={"name": ""})
    assert resp.status_code == 400
    assert "cannot be empty" in resp.get_json()["error"]


def test_not_found_is_404(client):
    resp = client.get("/api/incidents/404")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Incident 404 not found"}


def test_incident_crud_and_privacy(client):
    est_id = _establishment(client)
    resp = client.post(f"/api/establishments/{est_id}/incidents", json={
        "employee_name": "Quinn Private",
        "incident_date": "2024-09-09",
        "description": "Exposure",
        "is_privacy_case": True,
    })
    assert resp.status_code == 201
    incident = resp.get_json()
    assert incident["case_number"] == 1

    listed = client.get(f"/api/establishments/{est_id}/incidents").get_json()
    assert listed[0]["employee_name"] == "Privacy Case"

    single = client.get(f"/api/incidents/{incident['id']}").get_json()
    assert single["employee_name"] == "Quinn Private"

    resp = client.put(f"/api/incidents/{incident['id']}", json={"case_number": 5})
    assert resp.status_code == 400

    resp = client.put(f"/api/incidents/{incident['id']}", json={"status": "closed"})
    assert resp.get_json()["status"] == "closed"

    assert client.delete(f"/api/incidents/{incident['id']}").status_code == 204
    assert client.get(f"/api/incidents/{incident['id']}").status_code == 404


def test_import_preview_and_import(client):
    est_id = _establishment(client)
    text = "Employee Name,Incident Date,Notes\nJane Doe,2026-03-01,fell\n,2026-03-02,no name\n"

    preview = client.post(
        "/api/import/preview",
        data={"file": _csv_upload(text)},
        content_type="multipart/form-data",
    ).get_json()
    assert preview["headers"] == ["Employee Name", "Incident Date", "Notes"]
    assert preview["total_rows"] == 2
    assert preview["suggested_mapping"] == {
        "employee_name": "Employee Name",
        "incident_date": "Incident Date",
    }

    mapping = dict(preview["suggested_mapping"], description="Notes")
    result = client.post(
        "/api/import",
        data={
            "file": _csv_upload(text),
            "establishment_id": str(est_id),
            "mapping": json.dumps(mapping),
        },
        content_type="multipart/form-data",
    ).get_json()
    assert result == {"imported": 1, "errors": ["Row 2: Missing employee name"]}

    log = client.get(f"/api/establishments/{est_id}/osha/300?year=2026").get_json()
    assert [(r["employee_name"], r["description"]) for r in log] == [("Jane Doe", "fell")]


def test_import_without_required_mapping_is_400(client):
    est_id = _establishment(client)
    resp = client.post(
        "/api/import",
        data={
            "file": _csv_upload("Name,Date\nA,2024-01-01\n"),
            "establishment_id": str(est_id),
            "mapping": json.dumps({"incident_date": "Date"}),
        },
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400
    assert client.get(f"/api/establishments/{est_id}/incidents").get_json() == []


def test_import_requires_file(client):
    est_id = _establishment(client)
    resp = client.post("/api/import", data={"establishment_id": str(est_id)})
    assert resp.status_code == 400


def test_non_utf8_import_is_400(client):
    est_id = _establishment(client)
    resp = client.post(
        "/api/import",
        data={
            "file": (io.BytesIO(b"Name,Date\nJos\xe9,2024-01-01\n"), "latin1.csv"),
            "establishment_id": str(est_id),
            "mapping": json.dumps({"employee_name": "Name", "incident_date": "Date"}),
        },
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400
    assert "UTF-8" in resp.get_json()["error"]
    assert client.get(f"/api/establishments/{est_id}/incidents").get_json() == []


def test_uploads_are_removed_after_use(app, client):
    est_id = _establishment(client)
    text = "Name,Date\nAli,2024-01-01\n"
    client.post("/api/import/preview", data={"file": _csv_upload(text)},
                content_type="multipart/form-data")
    client.post(
        "/api/import",
        data={
            "file": _csv_upload(text),
            "establishment_id": str(est_id),
            "mapping": json.dumps({"employee_name": "Name", "incident_date": "Date"}),
        },
        content_type="multipart/form-data",
    )
    client.post("/api/import/preview", data={"file": (io.BytesIO(b"\xff\xfe"), "bad.csv")},
                content_type="multipart/form-data")
    assert os.listdir(app.config["UPLOAD_DIR"]) == []


def test_auto_map_route(client):
    resp = client.post("/api/import/auto-map", json={"headers": ["employee name", "Date"]})
    assert resp.get_json() == {"employee_name": "employee name"}


def test_reports_and_stats(client):
    est_id = _establishment(client)
    client.post(f"/api/establishments/{est_id}/incidents", json={
        "employee_name": "Vic", "incident_date": "2024-02-02", "description": "Cut",
        "outcome_severity": "days_away", "days_away_count": 2,
    })

    resp = client.put(f"/api/establishments/{est_id}/annual-stats?year=2024",
                      json={"avg_employees": 10, "total_hours_worked": 200000})
    assert resp.status_code == 200
    stats = client.get(f"/api/establishments/{est_id}/annual-stats?year=2024").get_json()
    assert stats["total_hours_worked"] == 200000

    summary = client.get(f"/api/establishments/{est_id}/osha/300a?year=2024").get_json()
    assert summary["total_days_away_cases"] == 1
    assert summary["total_days_away"] == 2

    dash = client.get(f"/api/establishments/{est_id}/dashboard?year=2024").get_json()
    assert dash["summary"]["trir"] == 1.0
    assert dash["by_severity"] == [{"severity": "days_away", "count": 1}]

    assert client.get(f"/api/establishments/{est_id}/osha/300").status_code == 400
    assert client.get(f"/api/establishments/{est_id}/osha/300?year=1800").status_code == 400


def test_csv_download(client):
    est_id = _establishment(client)
    client.post(f"/api/establishments/{est_id}/incidents", json={
        "employee_name": "Wren", "incident_date": "2024-02-02", "description": "Cut",
    })
    resp = client.get(f"/api/establishments/{est_id}/osha/300.csv?year=2024")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    lines = resp.get_data(as_text=True).splitlines()
    assert lines[0].startswith("Case No.,Employee Name")
    assert "Wren" in lines[1]


def test_corrective_action_routes(client):
    est_id = _establishment(client)
    inc = client.post(f"/api/establishments/{est_id}/incidents", json={
        "employee_name": "Xan", "incident_date": "2024-02-02", "description": "Cut",
    }).get_json()
    session = client.post(f"/api/incidents/{inc['id']}/rca", json={"method": "five_whys"}).get_json()
    client.post(f"/api/rca/{session['id']}/five-whys",
                json={"step_number": 1, "question": "Why?", "answer": "Dull blade"})

    detail = client.get(f"/api/rca/{session['id']}").get_json()
    assert detail["five_whys"][0]["answer"] == "Dull blade"

    action = client.post(f"/api/incidents/{inc['id']}/corrective-actions", json={
        "description": "Replace blades", "rca_session_id": session["id"],
    }).get_json()
    resp = client.put(f"/api/corrective-actions/{action['id']}", json={"status": "overdue"})
    assert resp.status_code == 400
    resp = client.put(f"/api/corrective-actions/{action['id']}", json={"status": "completed"})
    assert resp.get_json()["completed_date"] is not None


def test_five_whys_partial_update_route(client):
    est_id = _establishment(client)
    inc = client.post(f"/api/establishments/{est_id}/incidents", json={
        "employee_name": "Yul", "incident_date": "2024-02-02", "description": "Strain",
    }).get_json()
    session = client.post(f"/api/incidents/{inc['id']}/rca", json={"method": "five_whys"}).get_json()
    step = client.post(f"/api/rca/{session['id']}/five-whys",
                       json={"step_number": 1, "question": "Why lift alone?"}).get_json()

    resp = client.put(f"/api/five-whys/{step['id']}", json={"answer": "No second person"})
    assert resp.status_code == 200
    assert resp.get_json()["question"] == "Why lift alone?"
    assert resp.get_json()["answer"] == "No second person"


def test_incident_bad_field_type_is_400(client):
    est_id = _establishment(client)
    resp = client.post(f"/api/establishments/{est_id}/incidents", json={
        "employee_name": "Zed", "incident_date": "2024-02-02", "description": "Cut",
        "outcome_severity": "days_away", "days_away_count": "many",
    })
    assert resp.status_code == 400
    assert "whole number" in resp.get_json()["error"]


def test_seed_is_idempotent(client):
    first = client.get("/seed").get_json()
    second = client.get("/seed").get_json()
    assert first["created"]["establishment"] is True
    assert first["created"]["incidents"] == 3
    assert second["created"] == {"establishment": False, "incidents": 0, "topics": 0, "templates": 0}
    assert first["establishment_id"] == second["establishment_id"]
    assert len(client.get("/api/jsa/templates").get_json()) == 2
