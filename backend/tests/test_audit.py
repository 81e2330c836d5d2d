"""Tests for the audit trail and its middleware."""

from datetime import datetime, timedelta, timezone

import pytest

from app.models.audit import AuditLogEntry
from app.services.audit_service import entity_from_path, log_action

API = "/api/v1"


class TestEntityFromPath:
    @pytest.mark.parametrize("path,expected", [
        (f"{API}/materials/12/stock", ("materials", "12")),
        (f"{API}/menu-items", ("menu_items", "")),
        (f"{API}/print-jobs/job_abc123_xyz", ("print_jobs", "job_abc123_xyz")),
        (f"{API}/orders/7/department-status", ("orders", "7")),
        (API, ("", "")),
    ])
    def test_parse(self, path, expected):
        assert entity_from_path(path, API) == expected


class TestLogAction:
    def test_with_session(self, db_session):
        log_action("update", "materials", "3", user_id=1, user_name="admin", db=db_session)
        entry = db_session.query(AuditLogEntry).one()
        assert entry.entity_id == "3"
        assert entry.details == {}

    def test_own_session(self, client, db_session):
        log_action("logout", "session", user_name="admin")
        db_session.expire_all()
        assert db_session.query(AuditLogEntry).filter(AuditLogEntry.action == "logout").count() == 1


class TestAuditMiddleware:
    def test_login_logged(self, client, staff_user, db_session):
        client.post(f"{API}/auth/login", json={"username": "waiter", "password": "testpass123"})
        entry = db_session.query(AuditLogEntry).filter(AuditLogEntry.action == "login").one()
        assert entry.user_id == staff_user.id
        assert entry.entity_type == "session"

    def test_failed_login_logged(self, client, db_session):
        client.post(f"{API}/auth/login", json={"username": "ghost", "password": "whatever"})
        entry = db_session.query(AuditLogEntry).filter(AuditLogEntry.action == "failed_login").one()
        assert entry.user_name == "ghost"
        assert entry.user_id is None

    def test_successful_write_logged(self, client, manager_headers, manager_user, db_session):
        response = client.post(f"{API}/categories", headers=manager_headers, json={"name": "Desserts"})
        category_id = response.json()["id"]
        client.put(f"{API}/categories/{category_id}", headers=manager_headers, json={"sort_order": 3})

        entries = (
            db_session.query(AuditLogEntry)
            .filter(AuditLogEntry.entity_type == "categories")
            .order_by(AuditLogEntry.id)
            .all()
        )
        assert [e.action for e in entries] == ["create", "update"]
        assert entries[1].entity_id == str(category_id)
        assert entries[1].user_id == manager_user.id
        assert entries[1].details["status_code"] == 200

    def test_failed_write_not_logged(self, client, manager_headers, db_session):
        client.post(f"{API}/categories", headers=manager_headers, json={"name": "X", "department": "nope"})
        assert db_session.query(AuditLogEntry).count() == 0

    def test_reads_not_logged(self, client, staff_headers, db_session):
        client.get(f"{API}/orders", headers=staff_headers)
        assert db_session.query(AuditLogEntry).count() == 0

    def test_anonymous_order_logged_without_user(self, client, place_order, pizza, db_session):
        order = place_order([{"menu_item_id": pizza.id, "quantity": 1}]).json()
        entry = db_session.query(AuditLogEntry).filter(AuditLogEntry.entity_type == "orders").one()
        assert entry.action == "create"
        assert entry.user_id is None
        assert entry.details["path"] == f"{API}/orders"
        assert order["id"]


class TestAuditLogsApi:
    @pytest.fixture
    def entries(self, db_session, admin_user, manager_user):
        log_action("create", "orders", "1", user_id=manager_user.id, user_name="manager", db=db_session)
        log_action("update", "orders", "1", user_id=manager_user.id, user_name="manager", db=db_session)
        log_action("update", "materials", "4", user_id=admin_user.id, user_name="admin", db=db_session)
        db_session.commit()

    def test_requires_admin(self, client, manager_headers):
        assert client.get(f"{API}/audit-logs", headers=manager_headers).status_code == 403

    def test_list(self, client, admin_headers, entries):
        data = client.get(f"{API}/audit-logs", headers=admin_headers).json()
        assert data["total"] == 3
        assert data["items"][0]["entity_type"] == "materials"
        assert data["has_more"] is False

    def test_filters(self, client, admin_headers, entries, manager_user):
        data = client.get(f"{API}/audit-logs", headers=admin_headers, params={"action": "update"}).json()
        assert data["total"] == 2
        data = client.get(f"{API}/audit-logs", headers=admin_headers, params={
            "entity_type": "orders", "user_id": manager_user.id,
        }).json()
        assert data["total"] == 2

    def test_date_filter(self, client, admin_headers, entries):
        tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).date().isoformat()
        data = client.get(f"{API}/audit-logs", headers=admin_headers, params={"start_date": tomorrow}).json()
        assert data["total"] == 0
        response = client.get(f"{API}/audit-logs", headers=admin_headers, params={"start_date": "soon"})
        assert response.status_code == 400

    def test_pagination(self, client, admin_headers, entries):
        data = client.get(f"{API}/audit-logs", headers=admin_headers, params={"limit": 2}).json()
        assert len(data["items"]) == 2
        assert data["has_more"] is True

    def test_summary(self, client, admin_headers, entries):
        data = client.get(f"{API}/audit-logs/summary", headers=admin_headers).json()
        assert data["total_actions"] == 3
        assert data["users_active"] == 2
        assert data["actions"] == {"create": 1, "update": 2}
        assert data["most_common_action"] == "update"
