"""
Café Aroma - Admin Security Panel Tests

Lock, unlock, reset, listing, details and stats under /api/admin, plus
role changes and account deletion.

Run with: pytest tests/test_admin_security.py -v
"""

from datetime import timedelta

import pytest
from sqlmodel import select

from aroma.auth import security_store
from aroma.auth.errors import InvalidInput
from aroma.auth.lockout import LockPolicy, SYSTEM_LOCK_REASON
from aroma.auth.models import Role, User, UserSecurity, utcnow
from aroma.auth.users import delete_user
from aroma.config import settings
from tests.conftest import (
    USER_PASSWORD,
    auth_headers,
    create_user,
    login_user,
    set_security,
)


def _security_row(db_session, user_id) -> UserSecurity:
    db_session.expire_all()
    return db_session.get(UserSecurity, user_id)


# =============================================================================
# LOCK / UNLOCK / RESET
# =============================================================================

class TestLockAccount:

    def test_temporary_lock(self, client, db_session, test_admin, test_user):
        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": "Actividad sospechosa en pedidos", "duration": 30},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "permanent": False,
            "message": "Usuario bloqueado por 30 minutos",
        }

        row = _security_row(db_session, test_user.id)
        assert row.is_locked is True
        assert row.is_permanently_locked is False
        assert row.lock_reason == "Actividad sospechosa en pedidos"

        login = login_user(client, "user@test.com", USER_PASSWORD)
        assert login.status_code == 423
        assert login.json()["remainingMin"] == 30

    def test_default_duration(self, client, test_admin, test_user):
        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": "Actividad sospechosa en pedidos"},
            headers=auth_headers(test_admin),
        )
        assert response.json()["message"] == "Usuario bloqueado por 15 minutos"

    def test_permanent_lock(self, client, db_session, test_admin, test_user):
        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": "Fraude confirmado con tarjeta", "permanent": True},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 200
        assert response.json()["permanent"] is True
        assert response.json()["message"] == "Usuario bloqueado permanentemente"

        row = _security_row(db_session, test_user.id)
        assert row.is_permanently_locked is True
        assert row.locked_until is None

        login = login_user(client, "user@test.com", USER_PASSWORD)
        assert login.status_code == 423
        assert login.json()["lock_reason"] == "Fraude confirmado con tarjeta"

    def test_short_reason_rejected_without_mutation(self, client, db_session, test_admin, test_user):
        """A 5-character reason is refused and nothing is written."""
        set_security(db_session, test_user.id, login_attempts=2)

        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": "abuso", "permanent": True},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

        row = _security_row(db_session, test_user.id)
        assert row.is_permanently_locked is False
        assert row.is_locked is False
        assert row.login_attempts == 2

    def test_non_string_reason_rejected_without_mutation(self, client, db_session, test_admin, test_user):
        set_security(db_session, test_user.id, login_attempts=1)

        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": 1234567890123},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Datos de entrada inválidos", "code": "INVALID_INPUT"}
        assert "1234567890123" not in response.text

        row = _security_row(db_session, test_user.id)
        assert row.is_locked is False
        assert row.lock_reason is None

    def test_overlong_reason_rejected_without_mutation(self, client, db_session, test_admin, test_user):
        set_security(db_session, test_user.id, login_attempts=1)

        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": "Fraude " * 50, "permanent": True},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

        row = _security_row(db_session, test_user.id)
        assert row.is_permanently_locked is False
        assert row.lock_reason is None

    def test_reason_at_column_limit_accepted(self, client, db_session, test_admin, test_user):
        reason = "R" * 255

        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": reason, "permanent": True},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 200
        assert _security_row(db_session, test_user.id).lock_reason == reason

    def test_unknown_user(self, client, test_admin):
        response = client.post(
            "/api/admin/security/users/00000000-0000-0000-0000-000000000000/lock",
            json={"reason": "Fraude confirmado con tarjeta"},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 404
        assert response.json()["code"] == "USER_NOT_FOUND"

    def test_viewer_cannot_lock(self, client, db_session, test_viewer, test_user):
        response = client.post(
            f"/api/admin/security/users/{test_user.id}/lock",
            json={"reason": "Fraude confirmado con tarjeta", "permanent": True},
            headers=auth_headers(test_viewer),
        )

        assert response.status_code == 403
        assert response.json()["code"] == "READ_ONLY_ACCESS"
        assert _security_row(db_session, test_user.id) is None


class TestUnlockAndReset:

    def test_unlock(self, client, db_session, test_admin, test_user):
        set_security(
            db_session,
            test_user.id,
            login_attempts=5,
            is_permanently_locked=True,
            lock_reason="Fraude confirmado",
        )

        for _ in range(2):
            response = client.post(
                f"/api/admin/security/users/{test_user.id}/unlock",
                headers=auth_headers(test_admin),
            )
            assert response.status_code == 200
            assert response.json() == {"success": True, "message": "Usuario desbloqueado"}

        row = _security_row(db_session, test_user.id)
        assert row.login_attempts == 0
        assert row.is_permanently_locked is False
        assert row.lock_reason is None

        assert login_user(client, "user@test.com", USER_PASSWORD).status_code == 200

    def test_reset_attempts_only(self, client, db_session, test_admin, test_user):
        deadline = utcnow() + timedelta(minutes=10)
        set_security(
            db_session,
            test_user.id,
            login_attempts=5,
            is_locked=True,
            locked_until=deadline,
            lock_reason=SYSTEM_LOCK_REASON,
        )

        response = client.post(
            f"/api/admin/security/users/{test_user.id}/reset-attempts",
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 200
        row = _security_row(db_session, test_user.id)
        assert row.login_attempts == 0
        assert row.is_locked is True
        assert row.locked_until == deadline


# =============================================================================
# LISTING, DETAILS, STATS
# =============================================================================

class TestSecurityListing:

    @pytest.fixture
    def populated(self, db_session, test_admin):
        now = utcnow()
        locked = create_user(db_session, "locked@test.com", USER_PASSWORD, name="Bloqueado")
        banned = create_user(db_session, "banned@test.com", USER_PASSWORD, name="Vetado")
        shaky = create_user(db_session, "shaky@test.com", USER_PASSWORD, name="Dudoso")
        expired = create_user(db_session, "expired@test.com", USER_PASSWORD, name="Expirado")

        set_security(db_session, locked.id, login_attempts=5, is_locked=True,
                     locked_until=now + timedelta(minutes=10), last_failed_login=now)
        set_security(db_session, banned.id, is_permanently_locked=True, lock_reason="Fraude confirmado")
        set_security(db_session, shaky.id, login_attempts=3, last_failed_login=now)
        set_security(db_session, expired.id, login_attempts=5, is_locked=True,
                     locked_until=now - timedelta(minutes=1))
        return {"locked": locked, "banned": banned, "shaky": shaky, "expired": expired}

    def _list(self, client, user, **params):
        return client.get("/api/admin/security/users", params=params, headers=auth_headers(user))

    def test_listing_order(self, client, test_admin, populated):
        response = self._list(client, test_admin)

        assert response.status_code == 200
        body = response.json()
        emails = [u["email"] for u in body["users"]]
        assert emails[0] == "banned@test.com"
        assert emails[1] == "locked@test.com"
        assert emails[2] == "shaky@test.com"
        assert body["pagination"] == {"page": 1, "totalPages": 1, "total": 5}

    def test_listing_clears_expired_locks(self, client, db_session, test_admin, populated):
        self._list(client, test_admin)

        row = _security_row(db_session, populated["expired"].id)
        assert row.is_locked is False
        assert row.locked_until is None
        assert row.login_attempts == 0

    @pytest.mark.parametrize("filter_name,expected", [
        ("locked", {"locked@test.com"}),
        ("permanent", {"banned@test.com"}),
        ("suspicious", {"shaky@test.com"}),
    ])
    def test_filters(self, client, test_admin, populated, filter_name, expected):
        response = self._list(client, test_admin, filter=filter_name)
        assert {u["email"] for u in response.json()["users"]} == expected

    def test_suspicious_follows_max_attempts(self, client, db_session, test_admin, monkeypatch):
        """Below the configured threshold counts as suspicious, not just below 5."""
        monkeypatch.setattr(settings, "MAX_LOGIN_ATTEMPTS", 10)
        persistent = create_user(db_session, "persistent@test.com", USER_PASSWORD, name="Insistente")
        set_security(db_session, persistent.id, login_attempts=7, last_failed_login=utcnow())

        response = self._list(client, test_admin, filter="suspicious")

        assert {u["email"] for u in response.json()["users"]} == {"persistent@test.com"}

    @pytest.mark.asyncio
    async def test_suspicious_with_explicit_policy(self, db_session, populated):
        strict = LockPolicy(max_attempts=3)

        overview = await security_store.list_security_overview(
            db_session, filter_name="suspicious", policy=strict
        )

        assert overview["users"] == []

    def test_invalid_filter(self, client, test_admin):
        response = self._list(client, test_admin, filter="everything")
        assert response.status_code == 400

    def test_invalid_page(self, client, test_admin):
        response = self._list(client, test_admin, page=0)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    def test_search(self, client, test_admin, populated):
        response = self._list(client, test_admin, search="vetad")
        assert [u["email"] for u in response.json()["users"]] == ["banned@test.com"]

    def test_remaining_minutes(self, client, test_admin, populated):
        users = {u["email"]: u for u in self._list(client, test_admin).json()["users"]}

        assert users["locked@test.com"]["remaining_minutes"] == 10
        assert users["banned@test.com"]["remaining_minutes"] == 0

    def test_pagination(self, client, db_session, test_admin):
        for i in range(12):
            create_user(db_session, f"cliente{i:02d}@test.com", None, name=f"Cliente {i:02d}")

        first = self._list(client, test_admin).json()
        second = self._list(client, test_admin, page=2).json()

        assert len(first["users"]) == 10
        assert len(second["users"]) == 3
        assert first["pagination"]["totalPages"] == 2

    def test_viewer_can_list(self, client, test_viewer, populated):
        assert self._list(client, test_viewer).status_code == 200

    def test_user_cannot_list(self, client, test_user):
        response = self._list(client, test_user)
        assert response.status_code == 403


class TestSecurityDetailsAndStats:

    def test_details(self, client, db_session, test_admin, test_user):
        set_security(db_session, test_user.id, login_attempts=3, last_failed_login=utcnow())

        response = client.get(
            f"/api/admin/security/users/{test_user.id}", headers=auth_headers(test_admin)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["user"]["email"] == "user@test.com"
        assert body["security"]["login_attempts"] == 3
        assert body["stats"] == {"total_failed": 3, "failed_today": 3}

    def test_details_without_security_row(self, client, test_admin, test_user):
        response = client.get(
            f"/api/admin/security/users/{test_user.id}", headers=auth_headers(test_admin)
        )

        assert response.status_code == 200
        assert response.json()["security"]["is_locked"] is False

    def test_details_unknown_user(self, client, test_admin):
        response = client.get(
            "/api/admin/security/users/00000000-0000-0000-0000-000000000000",
            headers=auth_headers(test_admin),
        )
        assert response.status_code == 404

    def test_stats(self, client, db_session, test_admin, test_user, test_viewer):
        now = utcnow()
        set_security(db_session, test_user.id, is_permanently_locked=True, lock_reason="Fraude confirmado")
        set_security(db_session, test_viewer.id, login_attempts=2, last_failed_login=now, last_login=now)

        response = client.get("/api/admin/security/stats", headers=auth_headers(test_viewer))

        assert response.status_code == 200
        assert response.json() == {
            "permanently_locked": 1,
            "locked_accounts": 0,
            "accounts_with_attempts": 1,
            "failed_logins_today": 1,
            "successful_logins_today": 1,
        }


# =============================================================================
# ROLE CHANGES AND DELETION
# =============================================================================

class TestUserManagement:

    def test_change_role_applies_on_next_request(self, client, test_admin, test_user):
        headers = auth_headers(test_user)
        assert client.get("/api/admin/security/stats", headers=headers).status_code == 403

        response = client.put(
            f"/api/admin/users/{test_user.id}/role",
            json={"role": "viewer"},
            headers=auth_headers(test_admin),
        )
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "viewer"

        # Same token, new role
        assert client.get("/api/admin/security/stats", headers=headers).status_code == 200

    def test_cannot_change_own_role(self, client, test_admin):
        response = client.put(
            f"/api/admin/users/{test_admin.id}/role",
            json={"role": "user"},
            headers=auth_headers(test_admin),
        )
        assert response.status_code == 400

    def test_invalid_role(self, client, test_admin, test_user):
        response = client.put(
            f"/api/admin/users/{test_user.id}/role",
            json={"role": "superadmin"},
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Rol inválido"

    def test_viewer_cannot_change_roles(self, client, test_viewer, test_user):
        response = client.put(
            f"/api/admin/users/{test_user.id}/role",
            json={"role": "admin"},
            headers=auth_headers(test_viewer),
        )
        assert response.status_code == 403

    def test_delete_user(self, client, db_session, test_admin, test_user):
        user_id = test_user.id
        set_security(db_session, user_id, login_attempts=1)
        headers = auth_headers(test_user)

        response = client.delete(f"/api/admin/users/{user_id}", headers=auth_headers(test_admin))

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.exec(select(User).where(User.email == "user@test.com")).first() is None
        assert db_session.get(UserSecurity, user_id) is None

        # Outstanding sessions die with the account
        assert client.get("/api/auth/profile", headers=headers).status_code == 401

    def test_cannot_delete_self(self, client, test_admin):
        response = client.delete(f"/api/admin/users/{test_admin.id}", headers=auth_headers(test_admin))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_cannot_delete_last_admin(self, db_session, test_admin, test_user):
        with pytest.raises(InvalidInput) as exc_info:
            await delete_user(db_session, actor_id=test_user.id, target_id=test_admin.id)
        assert exc_info.value.message == "No puedes eliminar el último administrador"

    def test_admin_can_delete_another_admin(self, client, db_session, test_admin):
        other = create_user(db_session, "admin2@test.com", "AdminPass123!", Role.ADMIN, name="Admin 2")

        response = client.delete(f"/api/admin/users/{test_admin.id}", headers=auth_headers(other))
        assert response.status_code == 200

    def test_locked_admin_is_denied(self, client, db_session, test_admin, test_user):
        set_security(
            db_session,
            test_admin.id,
            is_locked=True,
            locked_until=utcnow() + timedelta(minutes=5),
        )

        response = client.post(
            f"/api/admin/security/users/{test_user.id}/unlock",
            headers=auth_headers(test_admin),
        )

        assert response.status_code == 423
        assert response.json()["code"] == "ACCOUNT_LOCKED"
