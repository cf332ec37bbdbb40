from datetime import datetime, timedelta

from app.hcard.db import session_scope
from app.hcard.models import DocumentType
from app.hcard.modules.applications.models import Application
from app.hcard.modules.applications.service import create_application
from app.hcard.modules.documents.models import REVIEW_REFERRED, DocumentUpload
from app.hcard.modules.documents.service import record_outcome, submit_upload, verify_upload
from app.hcard.modules.referrals import reconciliation
from app.hcard.modules.referrals.models import DocumentReferralHistory, DocumentRejectionHistory

from conftest import get_user

T0 = datetime(2026, 3, 1, 9, 0, 0)


def _slot(app, doc_key="valid_id", email="applicant@example.com"):
    with session_scope(app) as s:
        a = create_application(s, owner=get_user(s, email))
        dt = s.query(DocumentType).filter(DocumentType.key == doc_key).one()
        return a.id, dt.id


def _raw_upload(s, app_id, dt_id, *, review_status=REVIEW_REFERRED, is_current=True, uploaded_at=T0):
    u = DocumentUpload(
        application_id=app_id,
        document_type_id=dt_id,
        storage_key=f"applications/{app_id}/{dt_id}/seed.jpg",
        original_filename="seed.jpg",
        content_type="image/jpeg",
        size_bytes=10,
        uploaded_at=uploaded_at,
        review_status=review_status,
        is_current=is_current,
    )
    s.add(u)
    s.flush()
    return u


def _legacy(s, upload, attempt, *, at, was_replaced=False, category="quality_issue", reason="Too dark"):
    row = DocumentRejectionHistory(
        application_id=upload.application_id,
        document_type_id=upload.document_type_id,
        document_upload_id=upload.id,
        storage_key=upload.storage_key,
        original_filename=upload.original_filename,
        specific_issues=["Glare"],
        attempt_number=attempt,
        was_replaced=was_replaced,
        replaced_at=at + timedelta(hours=1) if was_replaced else None,
        status="resubmitted" if was_replaced else "pending",
        rejection_category=category,
        rejection_reason=reason,
        rejected_at=at,
    )
    s.add(row)
    return row


def _current(s, upload, attempt, *, at, was_replaced=False, issue_type="document_issue", category="blurry_photo"):
    row = DocumentReferralHistory(
        application_id=upload.application_id,
        document_type_id=upload.document_type_id,
        document_upload_id=upload.id,
        storage_key=upload.storage_key,
        original_filename=upload.original_filename,
        specific_issues=[],
        attempt_number=attempt,
        was_replaced=was_replaced,
        status="resubmitted" if was_replaced else "pending",
        issue_type=issue_type,
        medical_referral_category=category if issue_type == "medical_referral" else None,
        document_issue_category=category if issue_type == "document_issue" else None,
        referral_reason="Needs a clearer copy",
        doctor_name="Dr. X" if issue_type == "medical_referral" else None,
        referred_at=at,
    )
    s.add(row)
    return row


def test_history_falls_back_to_legacy_rows(app):
    app_id, dt_id = _slot(app)
    with session_scope(app) as s:
        u = _raw_upload(s, app_id, dt_id)
        _legacy(s, u, 1, at=T0, was_replaced=True)
        _legacy(s, u, 2, at=T0 + timedelta(days=1))

    with session_scope(app) as s:
        history = reconciliation.history_for(s, app_id, dt_id)
    assert [(v.source, v.attempt_number) for v in history] == [("legacy", 2), ("legacy", 1)]
    newest = history[0]
    assert newest.issue_type == "document_issue"
    assert newest.category == "quality_issue"
    assert newest.reason == "Too dark"
    assert newest.specific_issues == ("Glare",)
    assert newest.to_dict()["issueType"] == "document_issue"


def test_history_is_newest_first_across_sources(app):
    app_id, dt_id = _slot(app)
    with session_scope(app) as s:
        u = _raw_upload(s, app_id, dt_id)
        _legacy(s, u, 1, at=T0, was_replaced=True)
        _legacy(s, u, 2, at=T0 + timedelta(days=2), was_replaced=True)
        _current(s, u, 3, at=T0 + timedelta(days=5), issue_type="medical_referral", category="positive_stool")

    with session_scope(app) as s:
        history = reconciliation.history_for(s, app_id, dt_id)
        latest = reconciliation.latest_for(s, app_id, dt_id)
        assert reconciliation.next_attempt_number(s, app_id, dt_id) == 4
    assert [v.attempt_number for v in history] == [3, 2, 1]
    assert [v.source for v in history] == ["current", "legacy", "legacy"]
    assert latest.attempt_number == 3
    assert latest.category == "positive_stool"
    assert latest.to_dict()["doctorName"] == "Dr. X"


def test_current_record_wins_the_cutover_key_without_field_mixing(app):
    app_id, dt_id = _slot(app)
    with session_scope(app) as s:
        u = _raw_upload(s, app_id, dt_id)
        _legacy(s, u, 1, at=T0, reason="legacy reason", category="wrong_document")
        _current(s, u, 1, at=T0 + timedelta(minutes=5), issue_type="medical_referral", category="abnormal_xray")

    with session_scope(app) as s:
        history = reconciliation.history_for(s, app_id, dt_id)
    assert len(history) == 1
    view = history[0]
    assert view.source == "current"
    assert view.issue_type == "medical_referral"
    assert view.category == "abnormal_xray"
    assert view.reason == "Needs a clearer copy"
    assert view.specific_issues == ()


def test_counts_deduplicate_overlapping_keys(app):
    app_id, dt_id = _slot(app)
    other_app, other_dt = _slot(app, doc_key="urinalysis")
    with session_scope(app) as s:
        u = _raw_upload(s, app_id, dt_id)
        _legacy(s, u, 1, at=T0)
        _current(s, u, 1, at=T0, issue_type="medical_referral", category="abnormal_xray")
        u2 = _raw_upload(s, other_app, other_dt)
        _legacy(s, u2, 1, at=T0, was_replaced=True)
        _legacy(s, u2, 2, at=T0 + timedelta(days=1))

    with session_scope(app) as s:
        counts = reconciliation.counts_for(s, [app_id, other_app])
        own = reconciliation.counts_for_subject(s, get_user(s, "applicant@example.com").id)
        nobody = reconciliation.counts_for(s, [])

    assert counts.total == 3
    assert counts.pending_resubmission == 2
    assert counts.by_type == {"document_issue": 2, "medical_referral": 1}
    assert counts.applications == 2
    assert own == counts
    assert own.to_dict() == {
        "total": 3,
        "pendingResubmission": 2,
        "byType": {"document_issue": 2, "medical_referral": 1},
        "applications": 2,
    }
    assert nobody.total == 0


def test_counts_for_subject_only_sees_own_applications(app):
    mine, dt_id = _slot(app)
    theirs, _ = _slot(app, email="other@example.com")
    with session_scope(app) as s:
        _legacy(s, _raw_upload(s, mine, dt_id), 1, at=T0)
        _legacy(s, _raw_upload(s, theirs, dt_id), 1, at=T0)
        _legacy(s, s.query(DocumentUpload).filter(DocumentUpload.application_id == theirs).one(), 2, at=T0)

    with session_scope(app) as s:
        counts = reconciliation.counts_for_subject(s, get_user(s, "applicant@example.com").id)
    assert counts.total == 1
    assert counts.applications == 1


def test_resubmission_after_legacy_outcome_resolves_legacy_row_and_continues_numbering(app, storage):
    app_id, dt_id = _slot(app)
    with session_scope(app) as s:
        u = _raw_upload(s, app_id, dt_id)
        _legacy(s, u, 1, at=T0)

    with session_scope(app) as s:
        replacement = submit_upload(
            s,
            application=s.get(Application, app_id),
            document_type=s.get(DocumentType, dt_id),
            data=b"retake",
            filename="retake.jpg",
            content_type="image/jpeg",
            user=get_user(s, "applicant@example.com"),
            storage=storage,
        )
        replacement_id = replacement.id

    with session_scope(app) as s:
        legacy_row = s.query(DocumentRejectionHistory).one()
        assert legacy_row.was_replaced is True
        assert legacy_row.replacement_upload_id == replacement_id
        assert reconciliation.unresolved_for(s, app_id, dt_id) == []

        queue = reconciliation.resubmission_queue(s)
        assert [(i.outcome.source, i.upload.id) for i in queue] == [("legacy", replacement_id)]
        assert queue[0].to_dict()["originalReason"] == "Too dark"

    with session_scope(app) as s:
        result = record_outcome(
            s,
            application_id=app_id,
            document_type_id=dt_id,
            issue_type="document_issue",
            category="missing_info",
            reason="Back side missing",
            reviewer=get_user(s, "inspector@example.com"),
        )
        assert result.attempt_number == 2

    with session_scope(app) as s:
        assert s.query(DocumentRejectionHistory).count() == 1
        history = reconciliation.history_for(s, app_id, dt_id)
        assert [(v.source, v.attempt_number) for v in history] == [("current", 2), ("legacy", 1)]
        # the replacement is referred again, so it left the queue
        assert reconciliation.resubmission_queue(s) == []


def test_history_for_application_spans_slots(app):
    app_id, dt_id = _slot(app)
    with session_scope(app) as s:
        xray = s.query(DocumentType).filter(DocumentType.key == "chest_xray").one().id
        _legacy(s, _raw_upload(s, app_id, dt_id), 1, at=T0)
        _current(s, _raw_upload(s, app_id, xray), 1, at=T0 + timedelta(hours=2), issue_type="medical_referral", category="abnormal_xray")

    with session_scope(app) as s:
        history = reconciliation.history_for_application(s, app_id)
    assert [(v.document_type_id, v.source) for v in history] == [(xray, "current"), (dt_id, "legacy")]


def test_mixed_history_reports_categories_in_legacy_terms(app):
    app_id, dt_id = _slot(app)
    with session_scope(app) as s:
        u = _raw_upload(s, app_id, dt_id)
        _legacy(s, u, 1, at=T0, was_replaced=True, category="wrong_document")
        _current(s, u, 2, at=T0 + timedelta(days=1), was_replaced=True, category="blurry_photo")
        _current(s, u, 3, at=T0 + timedelta(days=2), category="missing_info")
        _current(s, u, 4, at=T0 + timedelta(days=3), issue_type="medical_referral", category="abnormal_xray")

    with session_scope(app) as s:
        history = reconciliation.history_for(s, app_id, dt_id)
    rows = [v.to_dict() for v in history]
    assert [(r["attemptNumber"], r["category"], r["legacyCategory"]) for r in rows] == [
        (4, "abnormal_xray", None),
        (3, "missing_info", "incomplete_document"),
        (2, "blurry_photo", "quality_issue"),
        (1, "wrong_document", "wrong_document"),
    ]


def _resubmit(app, storage, app_id, dt_id, data):
    with session_scope(app) as s:
        upload = submit_upload(
            s,
            application=s.get(Application, app_id),
            document_type=s.get(DocumentType, dt_id),
            data=data,
            filename="scan.jpg",
            content_type="image/jpeg",
            user=get_user(s, "applicant@example.com"),
            storage=storage,
        )
        return upload.id


def _flag(app, app_id, dt_id):
    with session_scope(app) as s:
        record_outcome(
            s,
            application_id=app_id,
            document_type_id=dt_id,
            issue_type="document_issue",
            category="blurry_photo",
            reason="Too blurry",
            reviewer=get_user(s, "inspector@example.com"),
        )


def test_reviewed_resubmissions_do_not_crowd_out_waiting_ones(app, storage):
    older_app, dt_id = _slot(app)
    newer_app, _ = _slot(app)
    for app_id in (older_app, newer_app):
        _resubmit(app, storage, app_id, dt_id, b"first")
        _flag(app, app_id, dt_id)
    waiting = _resubmit(app, storage, older_app, dt_id, b"second")
    reviewed = _resubmit(app, storage, newer_app, dt_id, b"second")
    with session_scope(app) as s:
        verify_upload(s, s.get(DocumentUpload, reviewed), reviewer=get_user(s, "inspector@example.com"))

    with session_scope(app) as s:
        queue = reconciliation.resubmission_queue(s, limit=1)
        assert [i.upload.id for i in queue] == [waiting]
