"""
Inventory items, units, assignments, packages, job types and CSV import/export.
"""
import threading
import uuid

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.models import InventoryUnit


def _item(client, **fields):
    resp = client.post("/api/inventory", json=fields)
    assert resp.status_code == 201, resp.text
    return resp.json()["item"]


def _assign(client, item_id, **fields):
    return client.post("/api/inventory/assignments", json={"inventory_item_id": item_id, **fields})


def _levels(client, item_id):
    item = client.get(f"/api/inventory/{item_id}").json()["item"]
    return item["available"], item["is_low_stock"]


class TestAvailability:
    def test_cable_reel_scenario(self, admin_client, project):
        reel = _item(admin_client, name="Cable Reel", quantity=10, threshold=2)

        assert _assign(admin_client, reel["id"], project_id=project["id"], quantity=9).status_code == 201
        assert _levels(admin_client, reel["id"]) == (1, False)

        assert _assign(admin_client, reel["id"], project_id=project["id"], quantity=1).status_code == 201
        assert _levels(admin_client, reel["id"]) == (0, True)

        resp = _assign(admin_client, reel["id"], project_id=project["id"], quantity=1)
        assert resp.status_code == 400
        assert "Insufficient inventory" in resp.json()["detail"]

    def test_returned_assignments_do_not_count(self, admin_client, project):
        item = _item(admin_client, name="Jack", quantity=5)
        a = _assign(admin_client, item["id"], project_id=project["id"], quantity=5).json()["assignment"]
        assert _levels(admin_client, item["id"])[0] == 0

        resp = admin_client.put(f"/api/inventory/assignments/{a['id']}", json={"status": "RETURNED"})
        assert resp.status_code == 200
        assert resp.json()["assignment"]["returned_at"] is not None
        assert _levels(admin_client, item["id"])[0] == 5

    def test_used_assignments_still_count(self, admin_client, project):
        item = _item(admin_client, name="Faceplate", quantity=3)
        a = _assign(admin_client, item["id"], project_id=project["id"], quantity=2).json()["assignment"]
        admin_client.put(f"/api/inventory/assignments/{a['id']}", json={"status": "USED"})
        assert _levels(admin_client, item["id"])[0] == 1

    def test_quantity_increase_rechecks_stock(self, admin_client, project):
        item = _item(admin_client, name="Patch cord", quantity=4)
        a = _assign(admin_client, item["id"], project_id=project["id"], quantity=2).json()["assignment"]
        assert admin_client.put(f"/api/inventory/assignments/{a['id']}", json={"quantity": 4}).status_code == 200
        resp = admin_client.put(f"/api/inventory/assignments/{a['id']}", json={"quantity": 5})
        assert resp.status_code == 400

    def test_concurrent_requests_for_last_unit(self, admin_client, project):
        item = _item(admin_client, name="Last reel", quantity=1)
        barrier = threading.Barrier(2)
        statuses = []

        def grab():
            client = TestClient(app)
            client.cookies.update(admin_client.cookies)
            barrier.wait()
            statuses.append(_assign(client, item["id"], project_id=project["id"], quantity=1).status_code)

        workers = [threading.Thread(target=grab) for _ in range(2)]
        for w in workers:
            w.start()
        for w in workers:
            w.join(timeout=30)

        assert sorted(statuses) == [201, 400]
        assert _levels(admin_client, item["id"])[0] == 0

    def test_target_required(self, admin_client):
        item = _item(admin_client, name="Box", quantity=1)
        assert _assign(admin_client, item["id"], quantity=1).status_code == 400

    def test_other_users_project_is_404(self, user_client, admin_client, project):
        item = _item(admin_client, name="Box", quantity=1)
        assert _assign(user_client, item["id"], project_id=project["id"]).status_code == 404

    def test_quantity_cannot_drop_below_assigned(self, admin_client, project):
        item = _item(admin_client, name="Keystone", quantity=10)
        _assign(admin_client, item["id"], project_id=project["id"], quantity=6)
        assert admin_client.put(f"/api/inventory/{item['id']}", json={"quantity": 5}).status_code == 400
        assert admin_client.put(f"/api/inventory/{item['id']}", json={"quantity": 6}).status_code == 200

    def test_low_stock_listing(self, admin_client):
        _item(admin_client, name="Plenty", quantity=50, threshold=5)
        _item(admin_client, name="Scarce", quantity=1, threshold=5)
        body = admin_client.get("/api/inventory/low-stock").json()
        assert body["count"] == 1
        assert body["items"][0]["name"] == "Scarce"
        names = [i["name"] for i in admin_client.get("/api/inventory", params={"low_stock_only": True}).json()["items"]]
        assert names == ["Scarce"]


class TestItemDelete:
    def test_blocked_by_active_assignment(self, admin_client, project):
        item = _item(admin_client, name="Rack", quantity=2)
        a = _assign(admin_client, item["id"], project_id=project["id"], quantity=1).json()["assignment"]

        resp = admin_client.delete(f"/api/inventory/{item['id']}")
        assert resp.status_code == 400
        assert resp.json()["detail"] == (
            "Cannot delete item with active assignments. Please return or remove assignments first."
        )

        assert admin_client.delete(f"/api/inventory/assignments/{a['id']}").status_code == 200
        assert admin_client.delete(f"/api/inventory/{item['id']}").status_code == 200
        assert admin_client.get(f"/api/inventory/{item['id']}").status_code == 404


class TestUnits:
    @pytest.fixture
    def camera(self, admin_client):
        return _item(admin_client, name="Camera", track_serial_numbers=True)

    def _unit(self, client, item_id, **fields):
        return client.post("/api/inventory/units", json={"inventory_item_id": item_id, **fields})

    def test_unit_lifecycle(self, admin_client, camera, milestone):
        unit = self._unit(admin_client, camera["id"], serial_number="SN-1", asset_tag="AT-1").json()["unit"]
        assert admin_client.get(f"/api/inventory/{camera['id']}").json()["item"]["quantity"] == 1

        resp = _assign(admin_client, camera["id"], inventory_unit_id=unit["id"], milestone_id=milestone["id"])
        assert resp.status_code == 201
        assignment = resp.json()["assignment"]
        assert assignment["quantity"] == 1
        assert assignment["project_id"] == milestone["project_id"]
        assert admin_client.get(f"/api/inventory/units/{unit['id']}").json()["unit"]["status"] == "ASSIGNED"

        again = _assign(admin_client, camera["id"], inventory_unit_id=unit["id"], milestone_id=milestone["id"])
        assert again.status_code == 400

        resp = admin_client.delete(f"/api/inventory/units/{unit['id']}")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot delete unit that is assigned to a project. Return it first."

        admin_client.delete(f"/api/inventory/assignments/{assignment['id']}")
        assert admin_client.get(f"/api/inventory/units/{unit['id']}").json()["unit"]["status"] == "AVAILABLE"

        assert admin_client.delete(f"/api/inventory/units/{unit['id']}").status_code == 200
        assert admin_client.get(f"/api/inventory/{camera['id']}").json()["item"]["quantity"] == 0

    def test_milestone_delete_frees_units(self, admin_client, camera, milestone):
        unit = self._unit(admin_client, camera["id"], serial_number="SN-2").json()["unit"]
        _assign(admin_client, camera["id"], inventory_unit_id=unit["id"], milestone_id=milestone["id"])
        admin_client.delete(f"/api/milestones/{milestone['id']}")
        assert admin_client.get(f"/api/inventory/units/{unit['id']}").json()["unit"]["status"] == "AVAILABLE"

    def test_returned_unit_reassigned_cannot_be_reactivated(self, admin_client, camera, milestone):
        unit = self._unit(admin_client, camera["id"], serial_number="SN-3").json()["unit"]
        first = _assign(admin_client, camera["id"], inventory_unit_id=unit["id"], milestone_id=milestone["id"])
        first_id = first.json()["assignment"]["id"]
        admin_client.put(f"/api/inventory/assignments/{first_id}", json={"status": "RETURNED"})

        second = _assign(admin_client, camera["id"], inventory_unit_id=unit["id"], milestone_id=milestone["id"])
        assert second.status_code == 201

        for status in ("ASSIGNED", "USED"):
            resp = admin_client.put(f"/api/inventory/assignments/{first_id}", json={"status": status})
            assert resp.status_code == 400
            assert resp.json()["detail"] == "Unit is not available for assignment"

        holders = [
            a for a in admin_client.get("/api/inventory/assignments", params={"inventory_item_id": camera["id"]}).json()["assignments"]
            if a["status"] in ("ASSIGNED", "USED")
        ]
        assert [a["id"] for a in holders] == [second.json()["assignment"]["id"]]

    def test_returned_unit_can_be_reactivated_while_free(self, admin_client, camera, milestone):
        unit = self._unit(admin_client, camera["id"], serial_number="SN-4").json()["unit"]
        a = _assign(admin_client, camera["id"], inventory_unit_id=unit["id"], milestone_id=milestone["id"]).json()
        url = f"/api/inventory/assignments/{a['assignment']['id']}"
        admin_client.put(url, json={"status": "RETURNED"})
        assert admin_client.get(f"/api/inventory/units/{unit['id']}").json()["unit"]["status"] == "AVAILABLE"

        assert admin_client.put(url, json={"status": "ASSIGNED"}).status_code == 200
        assert admin_client.get(f"/api/inventory/units/{unit['id']}").json()["unit"]["status"] == "ASSIGNED"

    def test_duplicate_identifiers(self, admin_client, camera):
        self._unit(admin_client, camera["id"], serial_number="SN-1", asset_tag="AT-1")
        dup_tag = self._unit(admin_client, camera["id"], serial_number="SN-9", asset_tag="AT-1")
        assert dup_tag.status_code == 400
        assert dup_tag.json()["detail"] == "Asset tag already exists"
        dup_serial = self._unit(admin_client, camera["id"], serial_number="SN-1")
        assert dup_serial.status_code == 400
        assert dup_serial.json()["detail"] == "Serial number already exists for this item"
        # the rejected creates did not bump the count
        assert admin_client.get(f"/api/inventory/{camera['id']}").json()["item"]["quantity"] == 1

    def test_listing_heals_orphaned_units(self, admin_client, camera, db_session):
        unit = self._unit(admin_client, camera["id"], serial_number="SN-3").json()["unit"]
        row = db_session.get(InventoryUnit, uuid.UUID(unit["id"]))
        row.status = "ASSIGNED"
        db_session.commit()

        units = admin_client.get("/api/inventory/units", params={"inventory_item_id": camera["id"]}).json()["units"]
        assert units[0]["status"] == "AVAILABLE"
        assert units[0]["assignment"] is None

    def test_item_id_required(self, admin_client):
        assert admin_client.get("/api/inventory/units").status_code == 400

    def test_qr(self, admin_client, camera):
        unit = self._unit(admin_client, camera["id"], serial_number="SN-4").json()["unit"]
        body = admin_client.get(f"/api/inventory/units/{unit['id']}/qr").json()
        assert body["qr_code"].startswith("data:image/png;base64,")
        assert body["url"] == f"http://testserver/dashboard/inventory/unit/{unit['id']}"
        assert body["unit"]["id"] == unit["id"]


class TestJobTypes:
    def test_duplicate_name_case_insensitive(self, admin_client):
        assert admin_client.post("/api/job-types", json={"name": "Security"}).status_code == 201
        assert admin_client.post("/api/job-types", json={"name": "security"}).status_code == 400

    def test_delete_blocked_in_use(self, admin_client):
        jt = admin_client.post("/api/job-types", json={"name": "Audio"}).json()["job_type"]
        _item(admin_client, name="Speaker", job_type_id=jt["id"])
        assert admin_client.delete(f"/api/job-types/{jt['id']}").status_code == 400
        rows = admin_client.get("/api/inventory/job-types").json()["job_types"]
        assert rows[0]["item_count"] == 1


class TestPackages:
    @pytest.fixture
    def job_type(self, admin_client):
        return admin_client.post("/api/job-types", json={"name": "Cabling"}).json()["job_type"]

    def test_apply_is_all_or_nothing(self, admin_client, job_type, milestone):
        cable = _item(admin_client, name="Cat6", quantity=10)
        jacks = _item(admin_client, name="Jack", quantity=1)
        package = admin_client.post(
            "/api/inventory/packages",
            json={
                "name": "Starter",
                "job_type_id": job_type["id"],
                "items": [
                    {"inventory_item_id": cable["id"], "quantity": 4},
                    {"inventory_item_id": jacks["id"], "quantity": 2},
                ],
            },
        ).json()["package"]

        resp = admin_client.post(f"/api/inventory/packages/{package['id']}/apply", json={"milestone_id": milestone["id"]})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Insufficient inventory for Jack. Available: 1, Required: 2"
        assert _levels(admin_client, cable["id"])[0] == 10

        admin_client.put(f"/api/inventory/{jacks['id']}", json={"quantity": 5})
        resp = admin_client.post(f"/api/inventory/packages/{package['id']}/apply", json={"milestone_id": milestone["id"]})
        assert resp.status_code == 200
        assert len(resp.json()["assignments"]) == 2
        assert _levels(admin_client, cable["id"])[0] == 6

    def test_single_default_per_job_type(self, admin_client, job_type):
        first = admin_client.post(
            "/api/inventory/packages", json={"name": "A", "job_type_id": job_type["id"], "is_default": True}
        ).json()["package"]
        admin_client.post("/api/inventory/packages", json={"name": "B", "job_type_id": job_type["id"], "is_default": True})
        assert admin_client.get(f"/api/inventory/packages/{first['id']}").json()["package"]["is_default"] is False

    def test_project_creation_applies_package(self, admin_client, job_type):
        cable = _item(admin_client, name="Cat6", quantity=10)
        scarce = _item(admin_client, name="Rack", quantity=0)
        package = admin_client.post(
            "/api/inventory/packages",
            json={
                "name": "Starter",
                "job_type_id": job_type["id"],
                "items": [
                    {"inventory_item_id": cable["id"], "quantity": 3},
                    {"inventory_item_id": scarce["id"], "quantity": 1},
                ],
            },
        ).json()["package"]

        resp = admin_client.post("/api/projects", json={"name": "New build", "package_id": package["id"]})
        assert resp.status_code == 201
        body = resp.json()
        assert [m["name"] for m in body["project"]["milestones"]] == ["Inventory"]
        assert body["warnings"] == ["Insufficient inventory for Rack. Available: 0, Required: 1"]
        assert _levels(admin_client, cable["id"])[0] == 7


class TestCsv:
    def test_round_trip(self, admin_client):
        _item(admin_client, name="Cable, Cat6", sku="C6", quantity=12, cost=0.5, notes='says "hi"')
        _item(admin_client, name="Jack", sku="J1", quantity=40, track_serial_numbers=False)
        exported = admin_client.get("/api/inventory/export")
        assert exported.status_code == 200
        assert exported.headers["content-disposition"].startswith('attachment; filename="inventory-export-')
        before = {(i["name"], i["sku"], i["quantity"]) for i in admin_client.get("/api/inventory").json()["items"]}

        for item in admin_client.get("/api/inventory").json()["items"]:
            admin_client.delete(f"/api/inventory/{item['id']}")
        assert admin_client.get("/api/inventory").json()["items"] == []

        resp = admin_client.post(
            "/api/inventory/import", files={"file": ("inventory.csv", exported.content, "text/csv")}
        )
        assert resp.status_code == 200
        assert resp.json()["created"] == 2
        assert resp.json()["errors"] == []
        after = {(i["name"], i["sku"], i["quantity"]) for i in admin_client.get("/api/inventory").json()["items"]}
        assert after == before

    def test_row_errors_do_not_abort(self, admin_client):
        admin_client.post("/api/job-types", json={"name": "Security"})
        csv_text = (
            "name,sku,qty,jobtype\n"
            "Camera,CAM-1,4,Security\n"
            ",X-1,1,\n"
            "Sensor,SEN-1,abc,\n"
            "Siren,SIR-1,2,Unknown\n"
        )
        resp = admin_client.post("/api/inventory/import", files={"file": ("i.csv", csv_text.encode(), "text/csv")})
        body = resp.json()
        assert body["created"] == 2
        assert body["errors"] == [
            "Row 3: Name is required",
            "Row 4: Quantity must be a number",
            'Row 5: Job type "Unknown" not found. Item will be uncategorized.',
        ]

    def test_upsert_by_sku(self, admin_client):
        _item(admin_client, name="Old name", sku="S-1", quantity=1)
        csv_text = "Name,SKU,Quantity\nNew name,S-1,9\n"
        body = admin_client.post(
            "/api/inventory/import", files={"file": ("i.csv", csv_text.encode(), "text/csv")}
        ).json()
        assert (body["created"], body["updated"]) == (0, 1)
        items = admin_client.get("/api/inventory").json()["items"]
        assert [(i["name"], i["quantity"]) for i in items] == [("New name", 9)]

    def test_upsert_cannot_drop_below_assigned(self, admin_client, project):
        item = _item(admin_client, name="Spool", sku="SP-1", quantity=10)
        _assign(admin_client, item["id"], project_id=project["id"], quantity=6)
        csv_text = "Name,SKU,Quantity,Notes\nSpool,SP-1,4,recount\n"
        body = admin_client.post(
            "/api/inventory/import", files={"file": ("i.csv", csv_text.encode(), "text/csv")}
        ).json()
        assert (body["created"], body["updated"]) == (0, 0)
        assert body["errors"] == ["Row 2: Quantity cannot be less than the assigned quantity (6)"]

        after = admin_client.get(f"/api/inventory/{item['id']}").json()["item"]
        assert after["quantity"] == 10
        assert after["available"] == 4
        assert after["notes"] is None

    def test_header_only_rejected(self, admin_client):
        resp = admin_client.post("/api/inventory/import", files={"file": ("i.csv", b"Name,SKU\n", "text/csv")})
        assert resp.status_code == 400

    def test_template(self, admin_client):
        resp = admin_client.get("/api/inventory/template")
        lines = resp.text.strip().splitlines()
        assert lines[0].startswith("Name,Description,SKU,Part Number,Category,Job Type,Quantity,Available")
        assert len(lines) == 2
