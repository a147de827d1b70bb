"""
Administration API tests: users, blocks and curator assignments,
reference values, FAQ, audit trail and dashboards.
"""


class TestUsers:
    def test_admin_only(self, client, headers):
        assert client.get("/api/v1/users", headers=headers["curator"]).status_code == 403
        assert client.get("/api/v1/users", headers=headers["admin"]).json()["total"] == 4

    def test_user_detail_lists_block_assignments(self, client, headers, seeded):
        data = client.get(f"/api/v1/users/{seeded['curator']}", headers=headers["admin"]).json()

        assert data["primary_block_ids"] == [seeded["test_block"]]
        assert data["backup_block_ids"] == []

    def test_create_user_must_enroll_mfa(self, client, headers):
        response = client.post(
            "/api/v1/users",
            json={"login": "fresh", "password": "long-enough-password", "role": "Curator"},
            headers=headers["admin"],
        )

        assert response.status_code == 201
        assert response.json()["is_first_login"] is True

        login = client.post(
            "/api/v1/auth/login", json={"login": "fresh", "password": "long-enough-password"}
        ).json()
        assert login["require_mfa_setup"] is True

    def test_duplicate_login(self, client, headers):
        response = client.post(
            "/api/v1/users",
            json={"login": "curator", "password": "long-enough-password"},
            headers=headers["admin"],
        )
        assert response.status_code == 400

    def test_cannot_delete_self(self, client, headers, seeded):
        response = client.delete(f"/api/v1/users/{seeded['admin']}", headers=headers["admin"])
        assert response.status_code == 400

    def test_cannot_delete_assigned_curator(self, client, headers, seeded):
        response = client.delete(f"/api/v1/users/{seeded['curator']}", headers=headers["admin"])
        assert response.status_code == 400

    def test_delete_deactivates(self, client, headers, seeded):
        response = client.delete(f"/api/v1/users/{seeded['analyst']}", headers=headers["admin"])
        assert response.status_code == 204

        data = client.get(f"/api/v1/users/{seeded['analyst']}", headers=headers["admin"]).json()
        assert data["is_active"] is False

    def test_malformed_user_id(self, client, headers):
        assert client.get("/api/v1/users/abc", headers=headers["admin"]).status_code == 404

    def test_change_own_password(self, client, headers):
        response = client.post(
            "/api/v1/users/me/change-password",
            json={"current_password": "correct-horse-battery-staple", "new_password": "another-password"},
            headers=headers["curator"],
        )
        assert response.status_code == 204

        login = client.post("/api/v1/auth/login", json={"login": "curator", "password": "another-password"})
        assert login.status_code == 200

    def test_change_own_password_checks_current(self, client, headers):
        response = client.post(
            "/api/v1/users/me/change-password",
            json={"current_password": "wrong", "new_password": "another-password"},
            headers=headers["curator"],
        )
        assert response.status_code == 401


class TestBlocks:
    def test_my_blocks(self, client, headers):
        curator = client.get("/api/v1/blocks/my", headers=headers["curator"]).json()
        admin = client.get("/api/v1/blocks/my", headers=headers["admin"]).json()
        analyst = client.get("/api/v1/blocks/my", headers=headers["analyst"]).json()

        assert [b["code"] for b in curator] == ["TEST"]
        assert {b["code"] for b in admin} == {"TEST", "OTHER"}
        assert analyst == []

    def test_duplicate_code(self, client, headers):
        response = client.post("/api/v1/blocks", json={"name": "Again", "code": "TEST"}, headers=headers["admin"])
        assert response.status_code == 400

    def test_only_curators_can_be_assigned(self, client, headers, seeded):
        response = client.post(
            f"/api/v1/blocks/{seeded['other_block']}/curators",
            json={"user_id": seeded["analyst"]},
            headers=headers["admin"],
        )
        assert response.status_code == 400

    def test_duplicate_assignment(self, client, headers, seeded):
        response = client.post(
            f"/api/v1/blocks/{seeded['test_block']}/curators",
            json={"user_id": seeded["curator"], "curator_type": "Primary"},
            headers=headers["admin"],
        )
        assert response.status_code == 400

    def test_backup_assignment_widens_scope(self, client, headers, seeded):
        response = client.post(
            f"/api/v1/blocks/{seeded['other_block']}/curators",
            json={"user_id": seeded["curator"], "curator_type": "Backup"},
            headers=headers["admin"],
        )
        assert response.status_code == 201

        contact = client.get(f"/api/v1/contacts/{seeded['contact_y']}", headers=headers["curator"])
        assert contact.status_code == 200

    def test_removing_assignment_revokes_access(self, client, headers, seeded):
        block = client.get(f"/api/v1/blocks/{seeded['test_block']}", headers=headers["admin"]).json()
        assignment_id = block["curators"][0]["id"]

        response = client.delete(
            f"/api/v1/blocks/{seeded['test_block']}/curators/{assignment_id}",
            headers=headers["admin"],
        )
        assert response.status_code == 204

        contact = client.get(f"/api/v1/contacts/{seeded['contact_x']}", headers=headers["curator"])
        assert contact.status_code == 403

    def test_archived_block_leaves_dashboard(self, client, headers, seeded):
        client.put(f"/api/v1/blocks/{seeded['other_block']}/archive", headers=headers["admin"])

        data = client.get("/api/v1/dashboard/admin", headers=headers["admin"]).json()
        assert data["total_contacts"] == 1
        assert data["total_blocks"] == 1


class TestReferences:
    def _create(self, client, headers, code="ally"):
        return client.post(
            "/api/v1/references",
            json={"category": "InfluenceStatus", "code": code, "value": "Ally"},
            headers=headers["admin"],
        )

    def test_create_and_read(self, client, headers):
        assert self._create(client, headers).status_code == 201

        values = client.get(
            "/api/v1/references", params={"category": "InfluenceStatus"}, headers=headers["curator"]
        ).json()
        assert [v["code"] for v in values] == ["ally"]
        assert client.get("/api/v1/references/categories", headers=headers["analyst"]).json() == [
            "InfluenceStatus"
        ]

    def test_duplicate_code_in_category(self, client, headers):
        self._create(client, headers)
        assert self._create(client, headers).status_code == 400

    def test_toggle_hides_value(self, client, headers):
        ref = self._create(client, headers).json()

        toggled = client.post(f"/api/v1/references/{ref['id']}/toggle-active", headers=headers["admin"])
        assert toggled.json()["is_active"] is False

        assert client.get("/api/v1/references", headers=headers["admin"]).json() == []
        everything = client.get(
            "/api/v1/references", params={"include_inactive": True}, headers=headers["admin"]
        ).json()
        assert len(everything) == 1

    def test_curator_cannot_create(self, client, headers):
        response = client.post(
            "/api/v1/references",
            json={"category": "InfluenceStatus", "code": "x", "value": "X"},
            headers=headers["curator"],
        )
        assert response.status_code == 403


class TestFaq:
    def test_lifecycle(self, client, headers):
        created = client.post(
            "/api/v1/faq",
            json={"title": "How do I log an interaction?", "content": "Open the contact."},
            headers=headers["admin"],
        ).json()

        assert [f["id"] for f in client.get("/api/v1/faq", headers=headers["curator"]).json()] == [created["id"]]

        assert client.delete(f"/api/v1/faq/{created['id']}", headers=headers["admin"]).status_code == 204
        assert client.get(f"/api/v1/faq/{created['id']}", headers=headers["curator"]).status_code == 404
        assert client.get("/api/v1/faq", headers=headers["curator"]).json() == []


class TestAudit:
    def test_actions_are_recorded(self, client, headers, seeded):
        client.put(
            f"/api/v1/contacts/{seeded['contact_x']}",
            json={"position": "Chair"},
            headers=headers["curator"],
        )

        entries = client.get(
            f"/api/v1/audit/entity/Contact/{seeded['contact_x']}", headers=headers["admin"]
        ).json()

        assert [e["action"] for e in entries] == ["Update"]
        assert entries[0]["user_login"] == "curator"
        assert entries[0]["new_values"]["position"] == "Chair"

    def test_filter_by_action(self, client, headers):
        client.post("/api/v1/auth/login", json={"login": "admin", "password": "correct-horse-battery-staple"})

        data = client.get("/api/v1/audit", params={"action": "Login"}, headers=headers["admin"]).json()

        assert data["total"] == 1
        assert data["items"][0]["user_login"] == "admin"

    def test_admin_only(self, client, headers):
        assert client.get("/api/v1/audit", headers=headers["curator"]).status_code == 403


class TestDashboards:
    def test_curator_dashboard_is_scoped(self, client, headers):
        data = client.get("/api/v1/dashboard/curator", headers=headers["curator"]).json()

        assert data["total_contacts"] == 1
        assert data["overdue_contacts"] == 1
        attention = data["contacts_requiring_attention"]
        assert [c["full_name"] for c in attention] == ["John Doe"]
        assert attention[0]["days_overdue"] >= 2

    def test_admin_calling_curator_dashboard_sees_all_blocks(self, client, headers):
        data = client.get("/api/v1/dashboard/curator", headers=headers["admin"]).json()
        assert data["total_contacts"] == 2

    def test_admin_dashboard(self, client, headers, seeded):
        client.post(
            "/api/v1/interactions",
            json={"contact_id": seeded["contact_x"], "interaction_type_id": 1},
            headers=headers["curator"],
        )

        data = client.get("/api/v1/dashboard/admin", headers=headers["admin"]).json()

        assert data["total_contacts"] == 2
        assert data["total_users"] == 4
        assert data["contacts_by_block"] == {"Test block": 1, "Other block": 1}
        assert data["interactions_by_block"] == {"Test block": 1}
        assert data["top_curators_by_activity"] == {"curator": 1}

    def test_admin_dashboard_requires_admin(self, client, headers):
        assert client.get("/api/v1/dashboard/admin", headers=headers["curator"]).status_code == 403
