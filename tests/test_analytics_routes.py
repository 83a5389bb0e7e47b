"""
Tests for the analytics and report API routes.
"""

import csv
import io
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

from openstream.db.models import Report, ScheduledReport
from openstream.models.api import LogAction, ValidationOutcome
from tests.conftest import (
    create_mock_code,
    create_mock_log,
    make_entry,
    make_result,
    summary_results,
)

REPORT_ID = UUID("12345678-1234-5678-1234-567812345678")


def assign_id(obj):
    obj.id = REPORT_ID


def stored_report() -> MagicMock:
    report = MagicMock(spec=Report)
    report.id = REPORT_ID
    report.name = "Usage Analytics Report 2026-10-12 to 2026-10-19"
    report.report_type = "usage"
    report.format = "csv"
    report.content = "Metric,Value\r\ntitle,Usage Analytics Report\r\n"
    report.period_start = datetime(2026, 10, 12, tzinfo=UTC)
    report.period_end = datetime(2026, 10, 19, tzinfo=UTC)
    report.generated_at = datetime(2026, 10, 19, tzinfo=UTC)
    report.size_bytes = len(report.content)
    return report


def stored_schedule() -> MagicMock:
    row = MagicMock(spec=ScheduledReport)
    row.id = uuid4()
    row.report_type = "overview"
    row.format = "json"
    row.date_range = "7d"
    row.email_address = "ops@example.com"
    row.frequency = "weekly"
    row.next_run_at = datetime(2026, 10, 26, tzinfo=UTC)
    row.last_run_at = None
    row.active = True
    row.created_at = datetime(2026, 10, 19, tzinfo=UTC)
    return row


class TestAnalyticsRoutes:
    """Tests for the dashboard analytics endpoints."""

    def test_requires_admin(self, client):
        for path in (
            "/api/analytics/overview",
            "/api/analytics/charts",
            "/api/analytics/metrics",
            "/api/admin/users",
            "/api/admin/users/export",
        ):
            assert client.get(path).status_code == 401

    def test_overview(self, client, db_session, admin_headers):
        generated = make_entry(LogAction.GENERATED, datetime.now(UTC) - timedelta(hours=1))
        db_session.execute = AsyncMock(
            side_effect=[
                *summary_results([generated]),
                *summary_results([generated]),
                *summary_results([]),
                make_result(scalars=[create_mock_code()]),
                make_result(scalar=4),
            ]
        )

        response = client.get("/api/analytics/overview", headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["totalCodes"] == 4
        assert body["activeCodes"] == 1
        assert body["trends"]["codesGenerated"]["value"] == 1

    def test_charts_unknown_range_is_week(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalars=[]), make_result(scalars=[create_mock_code()])]
        )

        response = client.get("/api/analytics/charts?range=1y", headers=admin_headers)

        body = response.json()
        assert len(body["dailyTrends"]) == 7
        assert len(body["hourlyUsage"]) == 24
        assert body["codeTypeDistribution"] == [{"name": "Standard", "value": 1}]

    def test_metrics(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(side_effect=[make_result(scalars=[]), make_result(scalars=[])])

        response = client.get("/api/analytics/metrics", headers=admin_headers)

        body = response.json()
        assert body["successRate"] == 100.0
        assert body["activeCodes"] == 0
        assert body["uptime"].endswith("m")

    def test_users(self, client, db_session, admin_headers):
        entry = make_entry(
            timestamp=datetime.now(UTC) - timedelta(minutes=5),
            success=True,
            outcome=ValidationOutcome.SUCCESS,
            user_agent="Mozilla/5.0 (iPhone) Mobile Safari/604.1",
        )
        db_session.execute = AsyncMock(return_value=make_result(scalars=[create_mock_log(entry)]))

        response = client.get("/api/admin/users?range=24h", headers=admin_headers)

        body = response.json()
        assert body["success"] is True
        assert body["users"][0]["device_type"] == "mobile"
        assert body["stats"]["totalUsers"] == 1
        assert body["stats"]["activeUsers"] == 1

    def test_users_export_csv(self, client, db_session, admin_headers):
        entry = make_entry(
            timestamp=datetime.now(UTC) - timedelta(hours=2),
            success=True,
            outcome=ValidationOutcome.SUCCESS,
            user_agent='Mozilla/5.0 (X11; Linux x86_64) "Custom, Build" Firefox/130.0',
        )
        db_session.execute = AsyncMock(return_value=make_result(scalars=[create_mock_log(entry)]))

        response = client.get("/api/admin/users/export", headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="users-export-')
        assert disposition.endswith('.csv"')
        assert response.headers["cache-control"] == "no-cache"
        rows = list(csv.reader(io.StringIO(response.text, newline="")))
        assert rows[0][0] == "IP Address"
        assert rows[1][0] == "10.0.0.1"
        assert rows[1][1] == "Firefox"
        assert rows[1][7] == "100"
        assert rows[1][8] == "Active"
        assert rows[1][9] == entry.user_agent

    def test_users_export_json(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[]))

        response = client.get("/api/admin/users/export?format=json&range=7d", headers=admin_headers)

        assert response.status_code == 200
        body = json.loads(response.text)
        assert body["totalUsers"] == 0
        assert body["users"] == []
        assert body["stats"]["totalUsers"] == 0

    def test_users_export_bad_format(self, client, admin_headers):
        response = client.get("/api/admin/users/export?format=xml", headers=admin_headers)

        assert response.status_code == 400
        assert "Supported formats" in response.json()["error"]


class TestReportRoutes:
    """Tests for report generation, download and scheduling."""

    def test_generate(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[]))
        db_session.refresh = AsyncMock(side_effect=assign_id)

        response = client.post(
            "/api/analytics/reports/generate",
            json={"type": "usage", "format": "json", "dateRange": "30d"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == str(REPORT_ID)
        assert body["type"] == "usage"
        assert body["downloadUrl"] == f"/api/analytics/reports/download/{REPORT_ID}"
        assert body["sizeBytes"] > 0

    def test_generate_custom_range_needs_both_ends(self, client, admin_headers):
        response = client.post(
            "/api/analytics/reports/generate",
            json={"type": "overview", "dateRange": "custom", "customStart": "2026-10-01T00:00:00Z"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert "customStart and customEnd" in response.json()["error"]

    def test_download(self, client, db_session, admin_headers):
        db_session.get = AsyncMock(return_value=stored_report())

        response = client.get(
            f"/api/analytics/reports/download/{REPORT_ID}", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert (
            response.headers["content-disposition"]
            == 'attachment; filename="usage-report-2026-10-19.csv"'
        )
        assert response.text.startswith("Metric,Value")

    def test_download_unknown(self, client, admin_headers):
        response = client.get(f"/api/analytics/reports/download/{uuid4()}", headers=admin_headers)
        assert response.status_code == 404

    def test_download_malformed_id(self, client, admin_headers):
        response = client.get("/api/analytics/reports/download/not-a-uuid", headers=admin_headers)
        assert response.status_code == 404

    def test_schedule(self, client, db_session, admin_headers):
        db_session.refresh = AsyncMock(side_effect=assign_id)

        response = client.post(
            "/api/analytics/reports/schedule",
            json={
                "type": "codes",
                "format": "csv",
                "emailAddress": "ops@example.com",
                "scheduleFrequency": "daily",
            },
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Report scheduled successfully"
        assert body["scheduledReport"]["frequency"] == "daily"
        assert body["scheduledReport"]["emailAddress"] == "ops@example.com"

    def test_schedule_requires_email(self, client, admin_headers):
        response = client.post(
            "/api/analytics/reports/schedule", json={"type": "codes"}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Email address is required for scheduled reports"

    def test_list_schedules(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[stored_schedule()]))

        response = client.get("/api/analytics/reports/schedule", headers=admin_headers)

        (item,) = response.json()["scheduledReports"]
        assert item["type"] == "overview"
        assert item["nextRun"].startswith("2026-10-26")

    def test_cancel_schedule(self, client, db_session, admin_headers):
        row = stored_schedule()
        db_session.get = AsyncMock(return_value=row)

        response = client.delete(
            f"/api/analytics/reports/schedule?id={row.id}", headers=admin_headers
        )

        assert response.json() == {
            "success": True,
            "message": "Scheduled report cancelled successfully",
        }
        assert row.active is False

    def test_cancel_requires_id(self, client, admin_headers):
        response = client.delete("/api/analytics/reports/schedule", headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Report ID is required"

    def test_cancel_unknown(self, client, admin_headers):
        response = client.delete(
            f"/api/analytics/reports/schedule?id={uuid4()}", headers=admin_headers
        )
        assert response.status_code == 404
