"""
Tests for the access code API routes.

Requests go through the FastAPI app with the database dependency replaced
by the mocked session from conftest.
"""

from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import OperationalError

from openstream.db.models import UsageLog
from openstream.models.api import CodeStatus, LogAction
from tests.conftest import create_mock_code, create_mock_log, make_entry, make_result


def redeemed_row() -> MagicMock:
    row = MagicMock()
    row.code = "ABCD1234"
    row.status = "used"
    row.current_uses = 1
    row.max_uses = None
    row.auto_expire_on_use = True
    return row


def no_cleanup() -> MagicMock:
    """Result of a cleanup sweep that expired nothing."""
    return make_result(scalars=[])


class TestGenerateRoute:
    """Tests for POST /api/access-codes {action: generate}."""

    def test_generate_requires_admin(self, client):
        response = client.post("/api/access-codes", json={"action": "generate"})

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_generate_rejects_wrong_token(self, client):
        response = client.post(
            "/api/access-codes",
            json={"action": "generate"},
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401

    def test_generate_defaults(self, client, admin_headers):
        response = client.post(
            "/api/access-codes", json={"action": "generate"}, headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert len(data["code"]) == 8
        assert data["expirationMinutes"] == 10
        assert data["autoExpire"] is True
        assert "expiresAt" in data
        assert "prefix" not in data
        assert "maxUses" not in data

    def test_generate_with_options(self, client, admin_headers):
        response = client.post(
            "/api/access-codes",
            json={
                "action": "generate",
                "duration": 60,
                "prefix": "vip",
                "autoExpire": False,
                "maxUses": 5,
            },
            headers=admin_headers,
        )

        data = response.json()
        assert data["code"].startswith("VIP")
        assert data["prefix"] == "VIP"
        assert data["autoExpire"] is False
        assert data["maxUses"] == 5
        assert data["expirationMinutes"] == 60

    def test_generate_invalid_duration(self, client, admin_headers):
        response = client.post(
            "/api/access-codes",
            json={"action": "generate", "duration": 0},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "Duration must be between 1 and 525600" in response.json()["error"]


class TestValidateRoute:
    """Tests for POST /api/access-codes {action: validate}."""

    def test_validate_is_public(self, client, db_session):
        db_session.execute = AsyncMock(
            side_effect=[no_cleanup(), make_result(first=redeemed_row())]
        )

        response = client.post(
            "/api/access-codes",
            json={"action": "validate", "code": "abcd1234"},
            headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1", "User-Agent": "pytest-agent"},
        )

        assert response.status_code == 200
        assert response.json() == {"valid": True, "message": "Access code validated successfully"}
        logs = [c.args[0] for c in db_session.add.call_args_list if isinstance(c.args[0], UsageLog)]
        assert logs[-1].ip_address == "203.0.113.5"
        assert logs[-1].user_agent == "pytest-agent"

    def test_validate_unknown_code(self, client, db_session):
        db_session.execute = AsyncMock(
            side_effect=[
                no_cleanup(),
                make_result(first=None),
                make_result(scalar_one_or_none=None),
            ]
        )

        response = client.post("/api/access-codes", json={"action": "validate", "code": "NOPE0000"})

        assert response.status_code == 400
        assert response.json() == {"valid": False, "error": "Invalid access code"}

    def test_validate_used_code(self, client, db_session):
        used = create_mock_code(status=CodeStatus.USED, current_uses=1)
        db_session.execute = AsyncMock(
            side_effect=[
                no_cleanup(),
                make_result(first=None),
                make_result(scalar_one_or_none=used),
            ]
        )

        response = client.post("/api/access-codes", json={"action": "validate", "code": "ABCD1234"})

        assert response.status_code == 400
        assert response.json()["error"] == "This access code already used"

    def test_validate_missing_code(self, client):
        response = client.post("/api/access-codes", json={"action": "validate"})

        assert response.status_code == 400
        assert response.json() == {"valid": False, "error": "Code is required"}

    def test_validate_database_failure(self, client, db_session):
        db_session.execute = AsyncMock(
            side_effect=[no_cleanup(), OperationalError("UPDATE", {}, Exception("down"))]
        )

        response = client.post("/api/access-codes", json={"action": "validate", "code": "ABCD1234"})

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"


class TestRevokeRoute:
    def test_revoke(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(return_value=make_result(scalar_one_or_none="ABCD1234"))

        response = client.post(
            "/api/access-codes",
            json={"action": "revoke", "code": "ABCD1234"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "message": "Code revoked successfully",
            "code": "ABCD1234",
            "status": "revoked",
        }

    def test_revoke_unknown(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar_one_or_none=None), make_result(scalar_one_or_none=None)]
        )

        response = client.post(
            "/api/access-codes",
            json={"action": "revoke", "code": "NOPE0000"},
            headers=admin_headers,
        )

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_revoke_requires_admin(self, client):
        response = client.post("/api/access-codes", json={"action": "revoke", "code": "ABCD1234"})
        assert response.status_code == 401


class TestActionDispatch:
    def test_unknown_action(self, client):
        response = client.post("/api/access-codes", json={"action": "explode"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"


class TestAdminOverview:
    """Tests for GET /api/access-codes?action=admin."""

    def test_overview(self, client, db_session, admin_headers):
        entry = make_entry(LogAction.GENERATED, details="Expires in 10 minutes")
        db_session.execute = AsyncMock(
            side_effect=[
                no_cleanup(),
                make_result(scalars=[create_mock_code()]),
                make_result(scalar=3),
                make_result(scalars=[create_mock_log(entry)]),
            ]
        )

        response = client.get("/api/access-codes?action=admin", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["totalCodes"] == 3
        assert data["activeCodes"][0]["code"] == "ABCD1234"
        assert "expiresAt" in data["activeCodes"][0]
        assert data["usageLogs"][0]["action"] == "generated"
        assert data["usageLogs"][0]["details"] == "Expires in 10 minutes"

    def test_overview_requires_admin(self, client):
        response = client.get("/api/access-codes?action=admin")
        assert response.status_code == 401

    def test_other_actions_rejected(self, client, admin_headers):
        response = client.get("/api/access-codes?action=list", headers=admin_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}
