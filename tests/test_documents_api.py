import io

from app.hcard.db import session_scope
from app.hcard.models import AuditEvent

from conftest import doc_type_id, login


def _create_application(client) -> int:
    r = client.post("/api/applications", json={"applicationType": "New", "jobCategory": "Food Handler"})
    assert r.status_code == 201, r.json
    return r.json["application"]["id"]


def _upload(client, app_id, dt_id, data=b"photo-bytes", filename="id.jpg"):
    return client.post(
        f"/api/applications/{app_id}/documents/{dt_id}",
        data={"file": (io.BytesIO(data), filename)},
        content_type="multipart/form-data",
    )


def _refer(client, app_id, dt_id, **payload):
    body = {"issueType": "document_issue", "category": "blurry_photo", "reason": "Blurry", "specificIssues": ["Face cut off"]}
    body.update(payload)
    return client.post(f"/api/applications/{app_id}/documents/{dt_id}/outcomes", json=body)


def test_referral_round_trip_over_http(app):
    applicant = app.test_client()
    inspector = app.test_client()
    login(applicant, "applicant@example.com")
    login(inspector, "inspector@example.com")
    dt_id = doc_type_id(app, "valid_id")

    app_id = _create_application(applicant)
    r = _upload(applicant, app_id, dt_id)
    assert r.status_code == 201
    first_upload = r.json["upload"]["id"]
    assert r.json["upload"]["reviewStatus"] == "Pending"

    r = _refer(inspector, app_id, dt_id)
    assert r.status_code == 201, r.json
    assert r.json["attemptNumber"] == 1
    assert r.json["remainingAttempts"] == 4
    assert r.json["outcome"]["source"] == "current"
    assert r.json["outcome"]["specificIssues"] == ["Face cut off"]

    # second outcome on the same unresolved slot
    r = _refer(inspector, app_id, dt_id)
    assert r.status_code == 409
    assert r.json["error"] == "integrity_violation"

    r = applicant.get(f"/api/applications/{app_id}")
    assert r.json["application"]["status"] == "Documents Need Revision"
    assert [h["attemptNumber"] for h in r.json["referralHistory"]] == [1]

    r = applicant.get("/api/referrals/counts")
    assert r.json == {"total": 1, "pendingResubmission": 1, "byType": {"document_issue": 1, "medical_referral": 0}, "applications": 1}

    r = _upload(applicant, app_id, dt_id, data=b"better-photo")
    assert r.status_code == 201
    second_upload = r.json["upload"]["id"]

    r = applicant.get(f"/api/applications/{app_id}/documents/{dt_id}/history")
    assert r.status_code == 200
    history = r.json["history"]
    assert len(history) == 1
    assert history[0]["documentUploadId"] == first_upload
    assert history[0]["wasReplaced"] is True
    assert history[0]["replacementUploadId"] == second_upload

    r = inspector.get("/api/referrals/resubmissions")
    assert r.status_code == 200
    assert [i["uploadId"] for i in r.json["resubmissions"]] == [second_upload]

    r = inspector.post(f"/api/uploads/{second_upload}/verify", json={"remarks": "Clear now"})
    assert r.status_code == 200
    assert r.json["upload"]["reviewStatus"] == "Verified"

    r = inspector.get(f"/api/applications/{app_id}/documents/{dt_id}")
    assert r.json["state"] == "Verified"
    assert [u["id"] for u in r.json["uploads"]] == [second_upload, first_upload]

    # verified slot is closed
    r = _upload(applicant, app_id, dt_id, data=b"again")
    assert r.status_code == 409
    assert r.json["error"] == "terminal_state"

    with session_scope(app) as s:
        actions = {e.action for e in s.query(AuditEvent).all()}
    assert {"application.create", "document.upload", "document.refer", "document.verify"} <= actions


def test_medical_referral_requires_doctor(app):
    applicant = app.test_client()
    inspector = app.test_client()
    login(applicant, "applicant@example.com")
    login(inspector, "inspector@example.com")
    dt_id = doc_type_id(app, "chest_xray")
    app_id = _create_application(applicant)
    _upload(applicant, app_id, dt_id, filename="xray.png")

    r = _refer(inspector, app_id, dt_id, issueType="medical_referral", category="abnormal_xray")
    assert r.status_code == 400
    assert r.json["error"] == "invalid_request"

    r = _refer(
        inspector,
        app_id,
        dt_id,
        issueType="medical_referral",
        category="abnormal_xray",
        doctorName="Dr. X",
        clinicAddress="Rural Health Unit 2",
        findingDescription="Opacity",
    )
    assert r.status_code == 201
    assert r.json["outcome"]["issueType"] == "medical_referral"
    assert r.json["outcome"]["doctorName"] == "Dr. X"

    r = applicant.get(f"/api/applications/{app_id}")
    assert r.json["application"]["status"] == "Referred for Medical Management"


def test_terminal_application_rejects_outcomes_over_http(app):
    applicant = app.test_client()
    admin = app.test_client()
    login(applicant, "applicant@example.com")
    login(admin, "admin@example.com")
    dt_id = doc_type_id(app, "valid_id")
    app_id = _create_application(applicant)
    _upload(applicant, app_id, dt_id)

    r = admin.post(f"/api/applications/{app_id}/status", json={"status": "Approved"})
    assert r.status_code == 400
    r = admin.post(f"/api/applications/{app_id}/status", json={"status": "Approved", "reason": "Complete"})
    assert r.status_code == 200
    assert r.json["application"]["isTerminal"] is True

    r = _refer(admin, app_id, dt_id)
    assert r.status_code == 409
    assert r.json["error"] == "terminal_state"


def test_applicants_cannot_review_or_read_other_applications(app):
    owner = app.test_client()
    stranger = app.test_client()
    login(owner, "applicant@example.com")
    login(stranger, "other@example.com")
    dt_id = doc_type_id(app, "valid_id")
    app_id = _create_application(owner)
    _upload(owner, app_id, dt_id)

    assert _refer(owner, app_id, dt_id).status_code == 403
    assert stranger.get(f"/api/applications/{app_id}").status_code == 403
    assert stranger.get(f"/api/applications/{app_id}/documents/{dt_id}/history").status_code == 403
    assert _upload(stranger, app_id, dt_id).status_code == 403
    assert stranger.get("/api/referrals/counts", query_string={"application_ids": str(app_id)}).status_code == 403
    assert stranger.get("/api/referrals/resubmissions").status_code == 403


def test_reviewer_counts_by_application_ids(app):
    applicant = app.test_client()
    inspector = app.test_client()
    login(applicant, "applicant@example.com")
    login(inspector, "inspector@example.com")
    dt_id = doc_type_id(app, "valid_id")
    app_id = _create_application(applicant)
    _upload(applicant, app_id, dt_id)
    _refer(inspector, app_id, dt_id)

    r = inspector.get("/api/referrals/counts", query_string={"application_ids": f"{app_id},9999"})
    assert r.status_code == 200
    assert r.json["total"] == 1
    assert r.json["applications"] == 2

    r = inspector.get("/api/referrals/counts", query_string={"application_ids": "x"})
    assert r.status_code == 400

    # the inspector owns no applications
    assert inspector.get("/api/referrals/counts").json["total"] == 0


def test_upload_requires_a_file(app):
    applicant = app.test_client()
    login(applicant, "applicant@example.com")
    app_id = _create_application(applicant)
    r = applicant.post(f"/api/applications/{app_id}/documents/{doc_type_id(app, 'valid_id')}", data={}, content_type="multipart/form-data")
    assert r.status_code == 400
    r = applicant.post(f"/api/applications/{app_id}/documents/9999", data={}, content_type="multipart/form-data")
    assert r.status_code == 404


def test_outcome_fields_with_wrong_types_are_rejected(app):
    applicant = app.test_client()
    inspector = app.test_client()
    login(applicant, "applicant@example.com")
    login(inspector, "inspector@example.com")
    dt_id = doc_type_id(app, "valid_id")
    app_id = _create_application(applicant)
    _upload(applicant, app_id, dt_id)

    for bad in (
        {"reason": 5},
        {"category": ["blurry_photo"]},
        {"issueType": 1},
        {"doctorName": {"name": "Dr. X"}},
        {"specificIssues": [1, 2]},
    ):
        r = _refer(inspector, app_id, dt_id, **bad)
        assert r.status_code == 400, bad
        assert r.json["error"] == "invalid_request"

    # nothing was recorded, so the first valid outcome is attempt 1
    r = _refer(inspector, app_id, dt_id)
    assert r.status_code == 201
    assert r.json["attemptNumber"] == 1
