from sqlalchemy import select, update

from facility_portal.models.company_membership import CompanyMembership
from facility_portal.models.join_request import JoinRequest
from facility_portal.services import join_request_service


def _register(client, *, email: str, company_name: str | None = None) -> str:
    payload = {
        "email": email,
        "firstName": "Jo",
        "lastName": "Joiner",
        "password": "password123",
    }
    if company_name:
        payload["companyName"] = company_name
    res = client.post("/api/auth/register", json=payload)
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _me(client, token: str) -> dict:
    return client.get("/api/auth/user", headers=_auth_headers(token)).json()


def _submit(client, token: str, company_id: str, **extra):
    return client.post(
        "/api/contractor/join-requests",
        json={"companyId": company_id, **extra},
        headers=_auth_headers(token),
    )


def test_submit_join_request_and_duplicate_is_rejected(test_context):
    client, _ = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    joiner_token = _register(client, email="joiner@example.com")

    res = _submit(client, joiner_token, company_id, requestedPermissionLevel="viewer", message="  Hi there ")
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["status"] == "pending"
    assert body["requestedPermissionLevel"] == "viewer"
    assert body["message"] == "Hi there"
    assert body["companyName"] == "Acme Mechanical"

    duplicate = _submit(client, joiner_token, company_id)
    assert duplicate.status_code == 409

    mine = client.get("/api/contractor/my-join-requests", headers=_auth_headers(joiner_token)).json()
    assert mine["pagination"]["total"] == 1


def test_submit_join_request_validation(test_context):
    client, _ = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    joiner_token = _register(client, email="joiner@example.com")

    assert _submit(client, joiner_token, "missing-company").status_code == 404
    assert _submit(client, owner_token, company_id).status_code == 409
    assert _submit(client, joiner_token, company_id, requestedPermissionLevel="owner").status_code == 422


def test_approve_at_higher_level_creates_membership(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    joiner_token = _register(client, email="joiner@example.com")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    request_id = _submit(client, joiner_token, company_id, requestedPermissionLevel="viewer").json()["id"]

    listing = client.get(
        "/api/contractor/join-requests?status=pending", headers=_auth_headers(owner_token)
    ).json()
    assert [item["id"] for item in listing["items"]] == [request_id]
    assert listing["items"][0]["requesterEmail"] == "joiner@example.com"

    res = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        json={"assignedPermissionLevel": "manager"},
        headers=_auth_headers(owner_token),
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["status"] == "approved"
    assert body["assignedPermissionLevel"] == "manager"
    assert body["reviewedByUserId"] == _me(client, owner_token)["id"]
    assert body["reviewedAt"] is not None

    joiner = _me(client, joiner_token)
    assert joiner["membership"]["companyId"] == company_id
    assert joiner["membership"]["permissionLevel"] == "manager"
    assert joiner["capabilities"]["canReviewJoinRequests"] is True

    reapprove = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        json={"assignedPermissionLevel": "viewer"},
        headers=_auth_headers(owner_token),
    )
    assert reapprove.status_code == 409
    reject = client.post(
        f"/api/contractor/join-requests/{request_id}/reject",
        json={"reviewNotes": "changed my mind"},
        headers=_auth_headers(owner_token),
    )
    assert reject.status_code == 409

    with session_local() as db:
        join_request = db.get(JoinRequest, request_id)
        assert join_request.status == "approved"
        assert join_request.review_notes is None


def test_approve_without_level_uses_requested_level(test_context):
    client, _ = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    joiner_token = _register(client, email="joiner@example.com")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    request_id = _submit(client, joiner_token, company_id).json()["id"]

    res = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        headers=_auth_headers(owner_token),
    )
    assert res.status_code == 200, res.text
    assert res.json()["assignedPermissionLevel"] == "editor"


def test_reject_records_notes_and_is_terminal(test_context):
    client, _ = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    joiner_token = _register(client, email="joiner@example.com")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    request_id = _submit(client, joiner_token, company_id).json()["id"]

    res = client.post(
        f"/api/contractor/join-requests/{request_id}/reject",
        json={"reviewNotes": "We are not hiring"},
        headers=_auth_headers(owner_token),
    )
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "rejected"

    approve = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        headers=_auth_headers(owner_token),
    )
    assert approve.status_code == 409
    assert _me(client, joiner_token)["membership"] is None

    mine = client.get("/api/contractor/my-join-requests", headers=_auth_headers(joiner_token)).json()
    assert mine["items"][0]["reviewNotes"] == "We are not hiring"

    # A rejected request does not block a fresh one.
    assert _submit(client, joiner_token, company_id).status_code == 201


def test_review_is_scoped_to_reviewers_company(test_context):
    client, _ = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    rival_token = _register(client, email="rival@example.com", company_name="Rival HVAC")
    joiner_token = _register(client, email="joiner@example.com")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    request_id = _submit(client, joiner_token, company_id).json()["id"]

    res = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        headers=_auth_headers(rival_token),
    )
    assert res.status_code == 404

    rival_listing = client.get("/api/contractor/join-requests", headers=_auth_headers(rival_token)).json()
    assert rival_listing["items"] == []


def test_viewer_cannot_review_join_requests(test_context):
    client, _ = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    viewer_token = _register(client, email="viewer@example.com")
    viewer_request = _submit(client, viewer_token, company_id, requestedPermissionLevel="viewer").json()["id"]
    client.post(
        f"/api/contractor/join-requests/{viewer_request}/approve",
        headers=_auth_headers(owner_token),
    )
    joiner_token = _register(client, email="joiner@example.com")
    request_id = _submit(client, joiner_token, company_id).json()["id"]

    res = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        headers=_auth_headers(viewer_token),
    )
    assert res.status_code == 403
    listing = client.get("/api/contractor/join-requests", headers=_auth_headers(viewer_token))
    assert listing.status_code == 403


def test_approval_conflicts_when_requester_joined_elsewhere(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    rival_token = _register(client, email="rival@example.com", company_name="Rival HVAC")
    joiner_token = _register(client, email="joiner@example.com")
    acme_id = _me(client, owner_token)["membership"]["companyId"]
    rival_id = _me(client, rival_token)["membership"]["companyId"]

    acme_request = _submit(client, joiner_token, acme_id).json()["id"]
    rival_request = _submit(client, joiner_token, rival_id).json()["id"]

    first = client.post(
        f"/api/contractor/join-requests/{rival_request}/approve",
        headers=_auth_headers(rival_token),
    )
    assert first.status_code == 200, first.text

    second = client.post(
        f"/api/contractor/join-requests/{acme_request}/approve",
        headers=_auth_headers(owner_token),
    )
    assert second.status_code == 409

    with session_local() as db:
        joiner_id = _me(client, joiner_token)["id"]
        memberships = db.execute(
            select(CompanyMembership).where(CompanyMembership.user_id == joiner_id)
        ).scalars().all()
        assert [m.company_id for m in memberships] == [rival_id]
        assert db.get(JoinRequest, acme_request).status == "pending"


def test_removed_member_is_reactivated_on_approval(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    joiner_token = _register(client, email="joiner@example.com")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    joiner_id = _me(client, joiner_token)["id"]

    first = _submit(client, joiner_token, company_id).json()["id"]
    client.post(f"/api/contractor/join-requests/{first}/approve", headers=_auth_headers(owner_token))
    removed = client.request(
        "DELETE",
        "/api/contractor/delete-member",
        json={"userId": joiner_id},
        headers=_auth_headers(owner_token),
    )
    assert removed.status_code == 200, removed.text

    second = _submit(client, joiner_token, company_id, requestedPermissionLevel="viewer").json()["id"]
    res = client.post(
        f"/api/contractor/join-requests/{second}/approve",
        headers=_auth_headers(owner_token),
    )
    assert res.status_code == 200, res.text

    with session_local() as db:
        memberships = db.execute(
            select(CompanyMembership).where(CompanyMembership.user_id == joiner_id)
        ).scalars().all()
        assert len(memberships) == 1
        assert memberships[0].is_active is True
        assert memberships[0].permission_level == "viewer"
        assert memberships[0].removed_at is None


def _reviewed_elsewhere(monkeypatch, session_local, *, status: str):
    close_request = join_request_service._close_request

    def racing_close(db, **kwargs):
        with session_local() as other:
            other.execute(update(JoinRequest).values(status=status))
            other.commit()
        return close_request(db, **kwargs)

    monkeypatch.setattr(join_request_service, "_close_request", racing_close)


def test_approve_conflicts_when_request_is_reviewed_concurrently(test_context, monkeypatch):
    client, session_local = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    joiner_token = _register(client, email="joiner@example.com")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    joiner_id = _me(client, joiner_token)["id"]
    request_id = _submit(client, joiner_token, company_id).json()["id"]

    _reviewed_elsewhere(monkeypatch, session_local, status="rejected")
    res = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        headers=_auth_headers(owner_token),
    )
    assert res.status_code == 409

    with session_local() as db:
        assert db.get(JoinRequest, request_id).status == "rejected"
        membership = db.execute(
            select(CompanyMembership).where(CompanyMembership.user_id == joiner_id)
        ).scalar_one_or_none()
        assert membership is None


def test_reject_conflicts_when_request_is_reviewed_concurrently(test_context, monkeypatch):
    client, session_local = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    joiner_token = _register(client, email="joiner@example.com")
    company_id = _me(client, owner_token)["membership"]["companyId"]
    request_id = _submit(client, joiner_token, company_id).json()["id"]

    _reviewed_elsewhere(monkeypatch, session_local, status="approved")
    res = client.post(
        f"/api/contractor/join-requests/{request_id}/reject",
        json={"reviewNotes": "too late"},
        headers=_auth_headers(owner_token),
    )
    assert res.status_code == 409

    with session_local() as db:
        join_request = db.get(JoinRequest, request_id)
        assert join_request.status == "approved"
        assert join_request.review_notes is None


def test_approve_conflicts_when_requester_joins_another_company_mid_review(test_context, monkeypatch):
    client, session_local = test_context
    owner_token = _register(client, email="owner@example.com", company_name="Acme Mechanical")
    rival_token = _register(client, email="rival@example.com", company_name="Rival HVAC")
    joiner_token = _register(client, email="joiner@example.com")
    acme_id = _me(client, owner_token)["membership"]["companyId"]
    rival_id = _me(client, rival_token)["membership"]["companyId"]
    joiner_id = _me(client, joiner_token)["id"]
    request_id = _submit(client, joiner_token, acme_id).json()["id"]

    close_request = join_request_service._close_request

    def joined_rival_meanwhile(db, **kwargs):
        with session_local() as other:
            other.add(
                CompanyMembership(
                    company_id=rival_id,
                    user_id=joiner_id,
                    role="team_member",
                    permission_level="viewer",
                )
            )
            other.commit()
        return close_request(db, **kwargs)

    monkeypatch.setattr(join_request_service, "_close_request", joined_rival_meanwhile)
    res = client.post(
        f"/api/contractor/join-requests/{request_id}/approve",
        headers=_auth_headers(owner_token),
    )
    assert res.status_code == 409

    with session_local() as db:
        memberships = db.execute(
            select(CompanyMembership).where(CompanyMembership.user_id == joiner_id)
        ).scalars().all()
        assert [m.company_id for m in memberships] == [rival_id]
        assert db.get(JoinRequest, request_id).status == "pending"
