"""
Promotion (cross-department handoff) tests.

Paths:
    intelligence → strategy | creative
    strategy     → creative
    creative     → (terminal)

Validation failures create nothing.  After the target project is committed,
member copy, provenance, audit and notification are best-effort: a failure
there yields a degraded 201, never a rollback.
"""

import pytest
from sqlalchemy import text

from portal.core.exceptions import ConflictError
from portal.models import db
from portal.models.audit import AuditLog
from portal.models.cross_department import CrossDepartmentRef
from portal.models.intelligence import TrendCluster
from portal.models.notification import Notification
from portal.models.project import Project, ProjectMember
from portal.services.promotion import PromotionCoordinator


def _promote(client, auth, user, project_id, **body):
    return client.post(f"/api/v1/projects/{project_id}/promote", json=body, headers=auth(user))


def _counts():
    return Project.query.count(), CrossDepartmentRef.query.count()


class TestPromotionHappyPath:
    def test_strategy_to_creative_defaults(self, client, auth, admin, owner, make_project):
        source = make_project(owner, department="strategy", status="research_complete",
                              target_audience="seed investors", notes="tam is large")
        res = _promote(client, auth, owner, source.id, target_department="creative")
        assert res.status_code == 201
        body = res.get_json()

        new = body["project"]
        assert new["department"] == "creative"
        assert new["type"] == "investor_pitch"
        assert new["status"] == "requested"
        assert new["owner_id"] == owner.id
        assert new["company_name"] == "Acme Robotics"
        assert new["target_audience"] == "seed investors"
        assert new["notes"] == "tam is large"
        assert body["source_id"] == source.id
        assert body["relationship"] == "promoted_to"
        assert body["degraded"] is False

        refs = CrossDepartmentRef.query.all()
        assert len(refs) == 1
        ref = refs[0]
        assert ref.source_id == source.id
        assert ref.source_type == "project"
        assert ref.source_department == "strategy"
        assert ref.target_id == new["id"]
        assert ref.target_department == "creative"
        assert ref.ref_metadata == {"promoted_by": owner.id, "source_status": "research_complete"}

    def test_exactly_one_new_project(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy", status="research_complete")
        _promote(client, auth, owner, source.id, target_department="creative")
        assert Project.query.count() == 2

    def test_members_copied_with_roles(self, client, auth, owner, make_user, make_project):
        editor = make_user("editor@acme.test")
        viewer = make_user("viewer@acme.test")
        source = make_project(owner, department="strategy",
                              members=[(editor, "editor"), (viewer, "viewer")])
        res = _promote(client, auth, editor, source.id, target_department="creative")
        assert res.status_code == 201
        target_id = res.get_json()["project"]["id"]

        roles = {m.user_id: m.role for m in ProjectMember.query.filter_by(project_id=target_id)}
        assert roles == {owner.id: "owner", editor.id: "editor", viewer.id: "viewer"}

    def test_intelligence_to_strategy(self, client, auth, owner, make_project):
        source = make_project(owner, department="intelligence", status="analyzing")
        res = _promote(client, auth, owner, source.id, target_department="strategy",
                       type="funding_landscape")
        assert res.status_code == 201
        new = res.get_json()["project"]
        assert new["type"] == "funding_landscape"
        assert new["status"] == "research_queued"

    def test_overrides_trimmed_and_capped(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, owner, source.id, target_department="creative",
                       project_name="  " + "n" * 300 + "  ", notes="  deck for demo day ")
        new = res.get_json()["project"]
        assert new["project_name"] == "n" * 200
        assert new["notes"] == "deck for demo day"

    def test_audit_and_notifications(self, client, auth, admin, owner, make_project):
        source = make_project(owner, department="strategy", company_name="Nimbus",
                              project_name="Cloud Study")
        res = _promote(client, auth, owner, source.id, target_department="creative")
        target_id = res.get_json()["project"]["id"]

        log = AuditLog.query.filter_by(action="project.promoted").one()
        assert log.entity_id == target_id
        assert log.diff["source_id"] == source.id

        admin_notes = Notification.query.filter_by(recipient_id=admin.id, type="project_promoted").all()
        assert len(admin_notes) == 1
        assert admin_notes[0].title == "project promoted to creative"
        assert admin_notes[0].body == 'Nimbus "Cloud Study" promoted from strategy to creative.'
        assert Notification.query.filter_by(recipient_id=owner.id, type="project_promoted_ack").count() == 1

    def test_source_claimed(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy")
        version = source.version
        _promote(client, auth, owner, source.id, target_department="creative")
        db.session.refresh(source)
        assert source.last_promoted_at is not None
        assert source.version == version + 1


class TestPromotionValidation:
    @pytest.mark.parametrize("target", ["creative", "strategy", "intelligence"])
    def test_creative_is_terminal(self, client, auth, owner, make_project, target):
        source = make_project(owner, department="creative", status="live")
        before = _counts()
        res = _promote(client, auth, owner, source.id, target_department=target)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_TERMINAL_DEPARTMENT"
        assert _counts() == before

    def test_strategy_cannot_go_back_to_intelligence(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, owner, source.id, target_department="intelligence")
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_PROMOTION_PATH"
        assert body["details"]["allowed"] == ["creative"]

    def test_invalid_type_creates_nothing(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy")
        before = _counts()
        audit_before = AuditLog.query.count()
        res = _promote(client, auth, owner, source.id, target_department="creative",
                       type="market_research")
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_TYPE"
        assert "investor_pitch" in body["details"]["allowed"]
        assert _counts() == before
        assert AuditLog.query.count() == audit_before
        assert Notification.query.count() == 0

    def test_target_required(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, owner, source.id)
        assert res.status_code == 400

    def test_unknown_source(self, client, auth, admin):
        res = _promote(client, auth, admin, "no-such-project", target_department="creative")
        assert res.status_code == 404


class TestPromotionAccess:
    def test_requires_identity(self, client, owner, make_project):
        source = make_project(owner, department="strategy")
        res = client.post(f"/api/v1/projects/{source.id}/promote",
                          json={"target_department": "creative"})
        assert res.status_code == 401

    def test_viewer_forbidden(self, client, auth, owner, make_user, make_project):
        viewer = make_user("viewer@acme.test")
        source = make_project(owner, department="strategy", members=[(viewer, "viewer")])
        res = _promote(client, auth, viewer, source.id, target_department="creative")
        assert res.status_code == 403
        assert Project.query.count() == 1

    def test_non_member_sees_not_found(self, client, auth, owner, make_user, make_project):
        stranger = make_user("stranger@else.test")
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, stranger, source.id, target_department="creative")
        assert res.status_code == 404

    def test_admin_bypasses_membership(self, client, auth, admin, owner, make_project):
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, admin, source.id, target_department="creative")
        assert res.status_code == 201


class TestPromotionDegraded:
    def test_audit_failure_keeps_project_and_ref(self, client, auth, owner, make_project, monkeypatch):
        def _boom(**kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr("portal.services.promotion.write_audit", _boom)
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, owner, source.id, target_department="creative")
        assert res.status_code == 201
        body = res.get_json()
        assert body["degraded"] is True
        assert body["failed_steps"] == ["audit"]
        assert db.session.get(Project, body["project"]["id"]) is not None
        assert CrossDepartmentRef.query.filter_by(target_id=body["project"]["id"]).count() == 1

    def test_provenance_failure_leaves_dangling_target(self, client, auth, owner, make_project, monkeypatch):
        from portal.services import project_service

        def _boom(self, ctx):
            raise RuntimeError("lost connection")

        monkeypatch.setattr(PromotionCoordinator, "_write_provenance", _boom)
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, owner, source.id, target_department="creative")
        assert res.status_code == 201
        body = res.get_json()
        assert body["failed_steps"] == ["write_provenance"]
        assert body["reference"] is None

        dangling = project_service.find_unreferenced_promotions()
        assert [p.id for p in dangling] == [body["project"]["id"]]

        monkeypatch.undo()
        ref = project_service.repair_promotion_ref(dangling[0])
        assert ref.source_id == source.id
        assert ref.source_department == "strategy"
        assert project_service.find_unreferenced_promotions() == []


class TestPromotionConcurrency:
    def test_stale_source_conflicts_and_creates_nothing(self, owner, make_project):
        source = make_project(owner, department="strategy")
        assert source.version == 1
        # A concurrent promotion already bumped the row
        db.session.execute(text("UPDATE projects SET version = version + 1 WHERE id = :id"),
                           {"id": source.id})

        with pytest.raises(ConflictError):
            PromotionCoordinator().promote(source.id, "creative", owner)

        assert Project.query.filter_by(department="creative").count() == 0
        assert CrossDepartmentRef.query.count() == 0


class TestUnifiedPromote:
    def test_trend_to_strategy(self, client, auth, owner):
        cluster = TrendCluster(name="Agentic payments", summary="wallets for bots",
                               velocity_percentile=95, lifecycle="emerging")
        db.session.add(cluster)
        db.session.commit()

        res = client.post("/api/v1/promote", headers=auth(owner), json={
            "source_type": "trend", "source_id": cluster.id, "target_department": "strategy",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["source_type"] == "trend_cluster"
        new = body["project"]
        assert new["company_name"] == "Unknown"
        assert new["project_name"] == "Agentic payments"
        assert new["status"] == "research_queued"

        member = ProjectMember.query.filter_by(project_id=new["id"]).one()
        assert (member.user_id, member.role) == (owner.id, "owner")
        ref = CrossDepartmentRef.query.one()
        assert (ref.source_type, ref.source_department) == ("trend_cluster", "intelligence")

    def test_project_source_as_editor(self, client, auth, owner, make_user, make_project):
        editor = make_user("editor@acme.test")
        source = make_project(owner, department="intelligence", members=[(editor, "editor")])
        res = client.post("/api/v1/promote", headers=auth(editor), json={
            "source_id": source.id, "target_department": "creative", "type": "website",
        })
        assert res.status_code == 201
        assert res.get_json()["project"]["type"] == "website"

    def test_unknown_source_type(self, client, auth, owner):
        res = client.post("/api/v1/promote", headers=auth(owner), json={
            "source_type": "brief", "source_id": "x", "target_department": "creative",
        })
        assert res.status_code == 400

    def test_missing_trend(self, client, auth, owner):
        res = client.post("/api/v1/promote", headers=auth(owner), json={
            "source_type": "trend", "source_id": "missing", "target_department": "creative",
        })
        assert res.status_code == 404


class TestPromotionPayloadTypes:
    @pytest.mark.parametrize("target", [["creative"], {"name": "creative"}, 5])
    def test_non_string_target_rejected(self, client, auth, owner, make_project, target):
        source = make_project(owner, department="strategy")
        before = _counts()
        res = _promote(client, auth, owner, source.id, target_department=target)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        assert _counts() == before

    def test_non_string_type_rejected(self, client, auth, owner, make_project):
        source = make_project(owner, department="strategy")
        res = _promote(client, auth, owner, source.id, target_department="creative",
                       type=["website"])
        assert res.status_code == 400

    @pytest.mark.parametrize("field,value", [
        ("source_type", ["trend"]),
        ("source_id", {"id": "x"}),
    ])
    def test_unified_non_string_fields(self, client, auth, owner, field, value):
        body = {"source_type": "trend", "source_id": "x", "target_department": "creative"}
        body[field] = value
        res = client.post("/api/v1/promote", headers=auth(owner), json=body)
        assert res.status_code == 400

    def test_check_path_rejects_unhashable_target(self):
        from portal.core.exceptions import InvalidPromotionPathError

        with pytest.raises(InvalidPromotionPathError) as exc:
            PromotionCoordinator().check_path("strategy", ["creative"])
        assert exc.value.allowed == ["creative"]
