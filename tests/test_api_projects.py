"""
Project endpoint tests: submission, detail, listing, admin status changes,
provenance references and health checks.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from portal.models import db
from portal.models.audit import AuditLog
from portal.models.notification import Notification
from portal.models.project import Project, ProjectMember


def _patch_status(client, auth, user, project_id, **body):
    return client.patch(f"/api/v1/projects/{project_id}/status", json=body, headers=auth(user))


class TestCreateProject:
    @pytest.mark.parametrize("dept,initial,default_type", [
        ("creative", "requested", "investor_pitch"),
        ("strategy", "research_queued", "market_research"),
        ("intelligence", "monitoring", "trend_monitor"),
    ])
    def test_initial_status(self, client, auth, owner, dept, initial, default_type):
        res = client.post("/api/v1/projects", headers=auth(owner), json={
            "department": dept, "company_name": "Acme Robotics",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == initial
        assert body["type"] == default_type
        assert body["project_name"] == "Acme Robotics"
        assert body["version"] == 1
        assert [(m["user_id"], m["role"]) for m in body["members"]] == [(owner.id, "owner")]

    def test_fields_trimmed(self, client, auth, owner):
        res = client.post("/api/v1/projects", headers=auth(owner), json={
            "department": "creative", "type": "website", "company_name": "  Nimbus  ",
            "project_name": "Launch site", "target_audience": "developers", "notes": " hi ",
        })
        body = res.get_json()
        assert body["company_name"] == "Nimbus"
        assert body["type"] == "website"
        assert body["notes"] == "hi"
        assert AuditLog.query.filter_by(action="project.create", entity_id=body["id"]).count() == 1

    def test_unknown_department(self, client, auth, owner):
        res = client.post("/api/v1/projects", headers=auth(owner), json={
            "department": "finance", "company_name": "Acme",
        })
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_STATE"
        assert body["details"]["allowed"] == ["creative", "intelligence", "strategy"]
        assert Project.query.count() == 0

    def test_foreign_type(self, client, auth, owner):
        res = client.post("/api/v1/projects", headers=auth(owner), json={
            "department": "strategy", "type": "website", "company_name": "Acme",
        })
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_TYPE"

    @pytest.mark.parametrize("payload", [
        {"company_name": "Acme"},
        {"department": "creative"},
        {"department": "creative", "company_name": "   "},
        {"department": "creative", "company_name": 42},
    ])
    def test_missing_fields(self, client, auth, owner, payload):
        res = client.post("/api/v1/projects", headers=auth(owner), json=payload)
        assert res.status_code == 400
        assert Project.query.count() == 0

    def test_requires_identity(self, client):
        res = client.post("/api/v1/projects", json={"department": "creative", "company_name": "A"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"


class TestProjectDetail:
    def test_member_sees_next_statuses(self, client, auth, owner, make_project):
        project = make_project(owner, department="creative", status="review")
        res = client.get(f"/api/v1/projects/{project.id}", headers=auth(owner))
        assert res.status_code == 200
        assert res.get_json()["valid_next_statuses"] == ["live", "on_hold", "revision"]

    def test_non_member_not_found(self, client, auth, owner, make_user, make_project):
        stranger = make_user("stranger@else.test")
        project = make_project(owner)
        res = client.get(f"/api/v1/projects/{project.id}", headers=auth(stranger))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_missing_for_admin(self, client, auth, admin):
        assert client.get("/api/v1/projects/nope", headers=auth(admin)).status_code == 404


class TestListProjects:
    def test_scoped_to_memberships(self, client, auth, admin, owner, make_user, make_project):
        other = make_user("other@else.test")
        mine = make_project(owner, department="creative")
        make_project(other, department="strategy")

        body = client.get("/api/v1/projects", headers=auth(owner)).get_json()
        assert [p["id"] for p in body["items"]] == [mine.id]
        assert body["total"] == 1

        assert client.get("/api/v1/projects", headers=auth(admin)).get_json()["total"] == 2

    def test_filters(self, client, auth, admin, owner, make_project):
        make_project(owner, department="creative", status="review")
        make_project(owner, department="creative", status="live")
        make_project(owner, department="strategy")
        res = client.get("/api/v1/projects?department=creative&status=review", headers=auth(admin))
        assert res.get_json()["total"] == 1


class TestChangeStatus:
    def test_admin_moves_project(self, client, auth, admin, owner, make_project):
        project = make_project(owner, department="creative")
        res = _patch_status(client, auth, admin, project.id, status="narrative_review")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "narrative_review"
        assert body["version"] == 2

        log = AuditLog.query.filter_by(action="project.status_change").one()
        assert log.diff == {"status": {"old": "requested", "new": "narrative_review"}}

    def test_members_notified(self, client, auth, admin, owner, make_user, make_project):
        viewer = make_user("viewer@acme.test")
        project = make_project(owner, department="strategy", members=[(viewer, "viewer")])
        _patch_status(client, auth, admin, project.id, status="researching")
        notes = Notification.query.filter_by(type="status_changed").all()
        assert {n.recipient_id for n in notes} == {owner.id, viewer.id}

    def test_illegal_transition(self, client, auth, admin, owner, make_project):
        project = make_project(owner, department="creative")
        res = _patch_status(client, auth, admin, project.id, status="live")
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_ILLEGAL_TRANSITION"
        assert body["details"]["allowed"] == ["narrative_review", "on_hold"]
        db.session.expire_all()
        assert db.session.get(Project, project.id).status == "requested"

    def test_cross_department_status(self, client, auth, admin, owner, make_project):
        project = make_project(owner, department="strategy", status="research_review")
        res = _patch_status(client, auth, admin, project.id, status="live")
        assert res.status_code == 400

    def test_non_admin_forbidden(self, client, auth, owner, make_project):
        project = make_project(owner, department="creative")
        res = _patch_status(client, auth, owner, project.id, status="narrative_review")
        assert res.status_code == 403

    def test_requires_identity(self, client, owner, make_project):
        project = make_project(owner)
        res = client.patch(f"/api/v1/projects/{project.id}/status", json={"status": "on_hold"})
        assert res.status_code == 401

    def test_artifact_url_must_be_https(self, client, auth, admin, owner, make_project):
        project = make_project(owner, department="creative", status="in_progress")
        res = _patch_status(client, auth, admin, project.id, status="review",
                            artifact_url="http://pitch.example/acme")
        assert res.status_code == 400
        res = _patch_status(client, auth, admin, project.id, status="review",
                            artifact_url="https://pitch.example/acme")
        assert res.status_code == 200
        assert res.get_json()["artifact_url"] == "https://pitch.example/acme"

    def test_stale_expected_version(self, client, auth, admin, owner, make_project):
        project = make_project(owner, department="creative")
        res = _patch_status(client, auth, admin, project.id, status="on_hold", expected_version=7)
        assert res.status_code == 409
        assert res.get_json()["details"]["current_status"] == "requested"

        res = _patch_status(client, auth, admin, project.id, status="on_hold", expected_version=1)
        assert res.status_code == 200

    def test_expected_version_must_be_int(self, client, auth, admin, owner, make_project):
        project = make_project(owner)
        res = _patch_status(client, auth, admin, project.id, status="on_hold", expected_version="1")
        assert res.status_code == 400

    def test_status_required(self, client, auth, admin, owner, make_project):
        project = make_project(owner)
        assert _patch_status(client, auth, admin, project.id).status_code == 400

    def test_unknown_project(self, client, auth, admin):
        assert _patch_status(client, auth, admin, "missing", status="on_hold").status_code == 404


class TestReferences:
    def test_outgoing_and_incoming(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy", status="research_complete")
        res = client.post(f"/api/v1/projects/{source.id}/promote", headers=auth(owner),
                          json={"target_department": "creative"})
        target_id = res.get_json()["project"]["id"]

        out = client.get(f"/api/v1/projects/{source.id}/references", headers=auth(owner)).get_json()
        assert [r["target_id"] for r in out["outgoing"]] == [target_id]
        assert out["incoming"] == []

        inc = client.get(f"/api/v1/projects/{target_id}/references", headers=auth(owner)).get_json()
        assert [r["source_id"] for r in inc["incoming"]] == [source.id]
        assert inc["incoming"][0]["metadata"]["source_status"] == "research_complete"

    def test_refs_are_immutable(self, client, auth, owner, make_project):
        from portal.models.cross_department import CrossDepartmentRef

        source = make_project(owner, department="strategy")
        client.post(f"/api/v1/projects/{source.id}/promote", headers=auth(owner),
                    json={"target_department": "creative"})
        ref = CrossDepartmentRef.query.one()
        ref.target_department = "strategy"
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()


class TestMembership:
    def test_role_constraint(self, owner, make_user, make_project):
        guest = make_user("guest@else.test")
        project = make_project(owner)
        db.session.add(ProjectMember(project_id=project.id, user_id=guest.id, role="guest"))
        with pytest.raises(IntegrityError):
            db.session.flush()
        db.session.rollback()


class TestHealth:
    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live_without_identity(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["database"]["status"] == "ok"


class TestStatusPayloadTypes:
    @pytest.mark.parametrize("status", [["review"], {"to": "review"}, 3])
    def test_non_string_status_rejected(self, client, auth, admin, owner, make_project, status):
        project = make_project(owner, department="creative", status="in_progress")
        res = _patch_status(client, auth, admin, project.id, status=status)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        db.session.expire_all()
        assert db.session.get(Project, project.id).status == "in_progress"

    def test_non_string_department_on_create(self, client, auth, owner):
        res = client.post("/api/v1/projects", headers=auth(owner), json={
            "department": ["creative"], "company_name": "Acme",
        })
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_STATE"


class TestReferenceDomain:
    def test_unknown_relationship_rejected(self, owner, make_project):
        from portal.models.cross_department import CrossDepartmentRef

        project = make_project(owner, department="strategy")
        db.session.add(CrossDepartmentRef(
            source_department="strategy", source_type="project", source_id=project.id,
            target_department="creative", target_type="project", target_id=project.id,
            relationship="inspired_by",
        ))
        with pytest.raises(ValueError):
            db.session.flush()
        db.session.rollback()
        assert CrossDepartmentRef.query.count() == 0


class TestAuditActions:
    def test_unknown_action_rejected(self, owner, make_project):
        from portal.models.audit import write_audit

        project = make_project(owner)
        with pytest.raises(ValueError):
            write_audit(entity_id=project.id, action="project.deleted")
        assert AuditLog.query.count() == 0
