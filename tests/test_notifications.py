"""
Notification dispatcher and endpoint tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from portal.models import db
from portal.models.notification import Notification
from portal.services.notification import NotificationDispatcher

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


def _note(user, title, minutes=0, is_read=False):
    n = Notification(recipient_id=user.id, type="status_changed", title=title,
                     created_at=T0 + timedelta(minutes=minutes), is_read=is_read)
    db.session.add(n)
    db.session.commit()
    return n


class TestNotify:
    def test_one_per_distinct_recipient(self, owner, make_user, make_project):
        other = make_user("other@acme.test")
        project = make_project(owner)
        sent = NotificationDispatcher.notify(
            [owner.id, other.id, owner.id, None, ""], project.id, "status_live", "live", "body",
        )
        assert sent == 2
        assert Notification.query.count() == 2
        assert {n.recipient_id for n in Notification.query} == {owner.id, other.id}

    def test_empty_recipients(self, owner, make_project):
        project = make_project(owner)
        assert NotificationDispatcher.notify([], project.id, "status_live", "live") == 0
        assert NotificationDispatcher.notify(None, project.id, "status_live", "live") == 0

    def test_failing_recipient_skipped(self, owner, make_user, make_project):
        other = make_user("other@acme.test")
        project = make_project(owner)
        sent = NotificationDispatcher.notify(
            [owner.id, "no-such-user", other.id], project.id, "escalation", "escalated",
        )
        assert sent == 2
        recipients = {n.recipient_id for n in Notification.query}
        assert recipients == {owner.id, other.id}

    def test_fields_stored(self, owner, make_project):
        project = make_project(owner)
        NotificationDispatcher.notify([owner.id], project.id, "research_approved",
                                      "research approved", "details here")
        n = Notification.query.one()
        assert n.project_id == project.id
        assert n.type == "research_approved"
        assert n.body == "details here"
        assert n.is_read is False
        assert n.read_at is None


class TestListNotifications:
    def test_newest_first_and_own_only(self, client, auth, owner, make_user):
        other = make_user("other@acme.test")
        _note(owner, "first", minutes=0)
        _note(owner, "third", minutes=20)
        _note(owner, "second", minutes=10)
        _note(other, "not mine", minutes=30)

        res = client.get("/api/v1/notifications", headers=auth(owner))
        assert res.status_code == 200
        body = res.get_json()
        assert [n["title"] for n in body["items"]] == ["third", "second", "first"]
        assert body["total"] == 3
        assert body["unread_count"] == 3

    def test_unread_only(self, client, auth, owner):
        _note(owner, "read", is_read=True)
        _note(owner, "unread", minutes=1)
        body = client.get("/api/v1/notifications?unread_only=true", headers=auth(owner)).get_json()
        assert [n["title"] for n in body["items"]] == ["unread"]
        assert body["total"] == 1

    def test_limit_capped_at_fifty(self, client, auth, owner):
        for i in range(55):
            db.session.add(Notification(recipient_id=owner.id, type="status_changed",
                                        title=f"n{i}", created_at=T0 + timedelta(seconds=i)))
        db.session.commit()
        body = client.get("/api/v1/notifications?limit=500", headers=auth(owner)).get_json()
        assert len(body["items"]) == 50
        assert body["total"] == 55

    def test_bad_limit(self, client, auth, owner):
        res = client.get("/api/v1/notifications?limit=lots", headers=auth(owner))
        assert res.status_code == 400

    def test_requires_identity(self, client):
        assert client.get("/api/v1/notifications").status_code == 401

    def test_unknown_user_header(self, client):
        res = client.get("/api/v1/notifications", headers={"X-User-Id": "ghost"})
        assert res.status_code == 401

    def test_unread_count(self, client, auth, owner):
        _note(owner, "a")
        _note(owner, "b", is_read=True)
        res = client.get("/api/v1/notifications/unread-count", headers=auth(owner))
        assert res.get_json() == {"count": 1}


class TestMarkRead:
    def test_marks_own_only(self, client, auth, owner, make_user):
        other = make_user("other@acme.test")
        mine = _note(owner, "mine")
        theirs = _note(other, "theirs")

        res = client.patch("/api/v1/notifications", headers=auth(owner),
                           json={"ids": [mine.id, theirs.id]})
        assert res.status_code == 200
        assert res.get_json() == {"updated": 1}

        db.session.expire_all()
        assert db.session.get(Notification, mine.id).is_read is True
        assert db.session.get(Notification, mine.id).read_at is not None
        assert db.session.get(Notification, theirs.id).is_read is False

    def test_mark_all(self, client, auth, owner, make_user):
        other = make_user("other@acme.test")
        _note(owner, "a")
        _note(owner, "b")
        _note(other, "c")
        res = client.patch("/api/v1/notifications", headers=auth(owner), json={"all": True})
        assert res.get_json() == {"updated": 2}
        assert NotificationDispatcher.unread_count(other.id) == 1
        assert NotificationDispatcher.unread_count(owner.id) == 0

    def test_already_read_not_counted(self, client, auth, owner):
        n = _note(owner, "done", is_read=True)
        res = client.patch("/api/v1/notifications", headers=auth(owner), json={"ids": [n.id]})
        assert res.get_json() == {"updated": 0}

    def test_bad_ids(self, client, auth, owner):
        for payload in ({}, {"ids": []}, {"ids": "abc"}, {"ids": [1, 2]}):
            res = client.patch("/api/v1/notifications", headers=auth(owner), json=payload)
            assert res.status_code == 400, payload

    def test_non_object_body(self, client, auth, owner):
        res = client.patch("/api/v1/notifications", headers=auth(owner), json=["x"])
        assert res.status_code == 400


class TestNotificationTypes:
    def test_unknown_type_rejected_before_writing(self, owner, make_project):
        project = make_project(owner)
        with pytest.raises(ValueError):
            NotificationDispatcher.notify([owner.id], project.id, "party_invite", "hello")
        assert Notification.query.count() == 0
