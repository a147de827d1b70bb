"""
Watchlist API tests: role gating, check scheduling and risk history.
"""

from datetime import datetime, timedelta

import pytest

from kurator.api.routes.watchlist import next_check_after
from kurator.db.orm import MonitoringFrequency


def _create(client, headers, **extra):
    body = {"full_name": "Viktor Example", "role_status": "Board member", **extra}
    return client.post("/api/v1/watchlist", json=body, headers=headers)


class TestNextCheckAfter:
    @pytest.mark.parametrize(
        "frequency,days",
        [
            (MonitoringFrequency.WEEKLY, 7),
            (MonitoringFrequency.MONTHLY, 30),
            (MonitoringFrequency.QUARTERLY, 90),
        ],
    )
    def test_scheduled_frequencies(self, frequency, days):
        checked_at = datetime(2024, 1, 1, 12, 0)
        assert next_check_after(frequency, checked_at) == checked_at + timedelta(days=days)

    def test_ad_hoc_has_no_schedule(self):
        assert next_check_after(MonitoringFrequency.AD_HOC, datetime(2024, 1, 1)) is None


class TestWatchlistAccess:
    def test_curator_is_forbidden(self, client, headers):
        assert client.get("/api/v1/watchlist", headers=headers["curator"]).status_code == 403
        assert _create(client, headers["curator"]).status_code == 403

    def test_analyst_creates_and_owns(self, client, headers, seeded):
        response = _create(client, headers["analyst"])

        assert response.status_code == 201
        data = response.json()
        assert data["watch_owner_id"] == seeded["analyst"]
        assert data["risk_level"] == "Low"
        assert data["monitoring_frequency"] == "Monthly"

    def test_admin_sees_analyst_entries(self, client, headers):
        _create(client, headers["analyst"])

        data = client.get("/api/v1/watchlist", headers=headers["admin"]).json()
        assert data["total"] == 1

    def test_delete_requires_admin(self, client, headers):
        entry = _create(client, headers["analyst"]).json()

        assert client.delete(f"/api/v1/watchlist/{entry['id']}", headers=headers["analyst"]).status_code == 403
        assert client.delete(f"/api/v1/watchlist/{entry['id']}", headers=headers["admin"]).status_code == 204
        assert client.get(f"/api/v1/watchlist/{entry['id']}", headers=headers["admin"]).status_code == 404

    def test_malformed_id(self, client, headers):
        assert client.get("/api/v1/watchlist/abc", headers=headers["analyst"]).status_code == 404


class TestChecks:
    def test_weekly_check_schedules_next_week(self, client, headers):
        entry = _create(client, headers["analyst"], monitoring_frequency="Weekly").json()

        before = datetime.utcnow()
        response = client.post(
            f"/api/v1/watchlist/{entry['id']}/check",
            json={"dynamics_update": "No change"},
            headers=headers["analyst"],
        )

        assert response.status_code == 200
        data = response.json()
        next_check = datetime.fromisoformat(data["next_check_date"])
        assert before + timedelta(days=7) - timedelta(minutes=1) <= next_check
        assert next_check <= datetime.utcnow() + timedelta(days=7)
        assert data["dynamics_description"] == "No change"
        assert data["requires_check"] is False

    def test_explicit_next_check_date_wins(self, client, headers):
        entry = _create(client, headers["analyst"]).json()

        response = client.post(
            f"/api/v1/watchlist/{entry['id']}/check",
            json={"next_check_date": "2031-06-01T00:00:00"},
            headers=headers["analyst"],
        )

        assert response.json()["next_check_date"].startswith("2031-06-01")

    def test_due_for_check(self, client, headers):
        overdue = _create(client, headers["analyst"], next_check_date="2020-01-01T00:00:00").json()
        _create(client, headers["analyst"], full_name="Later", next_check_date="2099-01-01T00:00:00")

        due = client.get("/api/v1/watchlist/due-for-check", headers=headers["analyst"]).json()

        assert [e["id"] for e in due] == [overdue["id"]]
        assert due[0]["requires_check"] is True

        stats = client.get("/api/v1/watchlist/statistics", headers=headers["analyst"]).json()
        assert stats["total"] == 2
        assert stats["requires_check"] == 1
        assert stats["by_risk_level"] == {"Low": 2}


class TestRiskHistory:
    def test_risk_change_is_recorded(self, client, headers):
        entry = _create(client, headers["analyst"]).json()

        client.post(
            f"/api/v1/watchlist/{entry['id']}/check",
            json={"new_risk_level": "High", "comment": "Escalated"},
            headers=headers["analyst"],
        )
        client.put(
            f"/api/v1/watchlist/{entry['id']}",
            json={"risk_level": "High", "role_status": "Former board member"},
            headers=headers["analyst"],
        )

        history = client.get(f"/api/v1/watchlist/{entry['id']}/history", headers=headers["analyst"]).json()

        assert len(history) == 1
        assert history[0]["old_risk_level"] == "Low"
        assert history[0]["new_risk_level"] == "High"
        assert history[0]["comment"] == "Escalated"
