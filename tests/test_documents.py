import io

import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from facility_portal.main import app
from facility_portal.models.document import Document
from facility_portal.routers import documents as documents_router
from facility_portal.services.storage_service import get_storage


def _register(client, *, email: str, company_name: str = "Acme Mechanical") -> str:
    res = client.post(
        "/api/auth/register",
        json={
            "email": email,
            "firstName": "Olive",
            "lastName": "Owner",
            "password": "password123",
            "companyName": company_name,
        },
    )
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _add_member(client, owner_token: str, *, email: str, permission_level: str) -> str:
    invite_res = client.post(
        "/api/contractor/invite-team-member",
        json={"email": email, "firstName": "Vic", "lastName": "Viewer", "permissionLevel": permission_level},
        headers=_auth_headers(owner_token),
    )
    credentials = invite_res.json()["credentials"]
    login_res = client.post(
        "/api/auth/login",
        json={"email": credentials["username"], "password": credentials["password"]},
    )
    return login_res.json()["access_token"]


def _upload(client, token: str, *, content: bytes = b"%PDF-1.7", name: str = "Site Plan.pdf",
            content_type: str = "application/pdf", **form):
    return client.post(
        "/api/documents",
        files={"file": (name, content, content_type)},
        data=form,
        headers=_auth_headers(token),
    )


def _stub_put(stubber, body: bytes = b"%PDF-1.7", content_type: str = "application/pdf"):
    stubber.add_response(
        "put_object",
        {"ETag": '"etag"'},
        {
            "Bucket": "user-uploads",
            "Key": ANY,
            "Body": body,
            "ContentType": content_type,
            "IfNoneMatch": "*",
        },
    )


def test_upload_stores_document_under_company_folder(test_context, s3_stub):
    client, session_local = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")
    company_id = client.get("/api/auth/user", headers=_auth_headers(owner_token)).json()["membership"]["companyId"]

    _stub_put(stubber)
    res = _upload(client, owner_token, documentType="pre_activity", applicationId="42")
    assert res.status_code == 201, res.text
    stubber.assert_no_pending_responses()

    body = res.json()
    assert body["filePath"].startswith(f"companies/{company_id}/file-")
    assert body["filePath"].endswith(".pdf")
    assert body["originalName"] == "Site Plan.pdf"
    assert body["documentType"] == "pre_activity"
    assert body["applicationId"] == 42
    assert body["size"] == 8
    assert "X-Amz-Signature" in body["signedUrl"]

    with session_local() as db:
        document = db.get(Document, body["id"])
        assert document.company_id == company_id
        assert document.mime_type == "application/pdf"


def test_upload_rejections(test_context, s3_stub):
    client, session_local = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")
    viewer_token = _add_member(client, owner_token, email="viewer@example.com", permission_level="viewer")

    forbidden = _upload(client, viewer_token)
    assert forbidden.status_code == 403

    wrong_type = _upload(client, owner_token, name="tool.exe", content=b"MZ", content_type="application/x-msdownload")
    assert wrong_type.status_code == 422
    assert wrong_type.json()["error"]["code"] == "validation_error"

    bad_document_type = _upload(client, owner_token, documentType="selfie")
    assert bad_document_type.status_code == 422

    stubber.assert_no_pending_responses()
    with session_local() as db:
        assert db.execute(select(func.count(Document.id))).scalar_one() == 0


def test_oversize_upload_is_rejected(test_context, s3_stub):
    client, _ = test_context
    storage, stubber = s3_stub
    storage.max_upload_bytes = 1024
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")

    res = _upload(client, owner_token, name="big.txt", content=b"x" * 4096, content_type="text/plain")
    assert res.status_code == 422
    assert "exceeds" in res.json()["error"]["message"]
    stubber.assert_no_pending_responses()


def test_download_preview_and_attachment(test_context, s3_stub):
    client, _ = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")
    viewer_token = _add_member(client, owner_token, email="viewer@example.com", permission_level="viewer")

    _stub_put(stubber)
    uploaded = _upload(client, owner_token).json()

    for _ in range(2):
        stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(b"%PDF-1.7"), 8), "ContentType": "application/pdf"},
            {"Bucket": "user-uploads", "Key": uploaded["filePath"]},
        )

    preview = client.get(
        f"/api/documents/{uploaded['id']}/download?preview=true", headers=_auth_headers(viewer_token)
    )
    assert preview.status_code == 200, preview.text
    assert preview.content == b"%PDF-1.7"
    assert preview.headers["content-type"].startswith("application/pdf")
    assert preview.headers["content-disposition"].startswith("inline;")

    attachment = client.get(f"/api/documents/{uploaded['id']}/download", headers=_auth_headers(viewer_token))
    assert attachment.headers["content-disposition"].startswith('attachment; filename="Site Plan.pdf"')
    stubber.assert_no_pending_responses()


def test_signed_url_honours_requested_lifetime(test_context, s3_stub):
    client, _ = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")
    _stub_put(stubber)
    uploaded = _upload(client, owner_token).json()

    res = client.get(
        f"/api/documents/{uploaded['id']}/signed-url?expiresIn=120", headers=_auth_headers(owner_token)
    )
    assert res.status_code == 200, res.text
    assert res.json()["expiresIn"] == 120
    assert "X-Amz-Expires=120" in res.json()["signedUrl"]

    too_long = client.get(
        f"/api/documents/{uploaded['id']}/signed-url?expiresIn=999999", headers=_auth_headers(owner_token)
    )
    assert too_long.status_code == 422


def test_documents_are_isolated_per_company(test_context, s3_stub):
    client, _ = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")
    rival_token = _register(client, email="rival@example.com", company_name="Rival HVAC")
    _stub_put(stubber)
    uploaded = _upload(client, owner_token).json()

    res = client.get(f"/api/documents/{uploaded['id']}/signed-url", headers=_auth_headers(rival_token))
    assert res.status_code == 404
    delete = client.delete(f"/api/documents/{uploaded['id']}", headers=_auth_headers(rival_token))
    assert delete.status_code == 404


def test_delete_removes_object_and_row(test_context, s3_stub):
    client, session_local = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")
    _stub_put(stubber)
    first = _upload(client, owner_token).json()
    _stub_put(stubber)
    second = _upload(client, owner_token).json()
    assert first["filePath"] != second["filePath"]

    stubber.add_response("head_object", {}, {"Bucket": "user-uploads", "Key": first["filePath"]})
    stubber.add_response("delete_object", {}, {"Bucket": "user-uploads", "Key": first["filePath"]})
    res = client.delete(f"/api/documents/{first['id']}", headers=_auth_headers(owner_token))
    assert res.status_code == 200, res.text

    # An object already gone from the bucket still lets the reference be cleaned up.
    stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
    res = client.delete(f"/api/documents/{second['id']}", headers=_auth_headers(owner_token))
    assert res.status_code == 200, res.text
    stubber.assert_no_pending_responses()

    with session_local() as db:
        assert db.execute(select(func.count(Document.id))).scalar_one() == 0


def test_storage_outage_returns_retryable_503(test_context, s3_stub):
    client, session_local = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")

    stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)
    res = _upload(client, owner_token)
    assert res.status_code == 503
    error = res.json()["error"]
    assert error["code"] == "service_unavailable"
    assert error["retryable"] is True
    assert "SlowDown" not in error["message"]
    assert res.headers["retry-after"] == "5"

    with session_local() as db:
        assert db.execute(select(func.count(Document.id))).scalar_one() == 0


def test_failed_commit_removes_uploaded_object(test_context, s3_stub, monkeypatch):
    client, session_local = test_context
    storage, stubber = s3_stub
    app.dependency_overrides[get_storage] = lambda: storage
    owner_token = _register(client, email="owner@example.com")

    def fail_audit(*args, **kwargs):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

    monkeypatch.setattr(documents_router, "log_audit_event", fail_audit)
    _stub_put(stubber)
    stubber.add_response("head_object", {}, {"Bucket": "user-uploads", "Key": ANY})
    stubber.add_response("delete_object", {}, {"Bucket": "user-uploads", "Key": ANY})

    with pytest.raises(OperationalError):
        _upload(client, owner_token)
    stubber.assert_no_pending_responses()

    with session_local() as db:
        assert db.execute(select(func.count(Document.id))).scalar_one() == 0
