"""Tests for materials, the stock ledger and inventory alerts."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.models.inventory import Material, MaterialStatus, StockMovement, derive_status
from app.models.notification import Notification
from app.services.inventory_service import InsufficientStockError, InventoryService

API = "/api/v1"


# ============== Status derivation ==============

class TestDeriveStatus:
    @pytest.mark.parametrize("quantity,min_limit,alert_limit,expected", [
        (0, 1, 2, MaterialStatus.OUT_OF_STOCK),
        (1, 1, 2, MaterialStatus.LOW_STOCK),
        (2, 1, 2, MaterialStatus.LOW_STOCK),
        (3, 1, 2, MaterialStatus.ACTIVE),
        (1, 1, 0, MaterialStatus.LOW_STOCK),
        (5, 0, 0, MaterialStatus.ACTIVE),
    ])
    def test_derive(self, quantity, min_limit, alert_limit, expected):
        assert derive_status(quantity, min_limit, alert_limit) == expected

    def test_negative_quantity_rejected_on_model(self):
        with pytest.raises(ValueError):
            Material(name="Salt", unit="g", current_quantity=Decimal("-1"))


# ============== Ledger service ==============

class TestInventoryService:
    def test_movement_updates_quantity_and_ledger(self, db_session, flour):
        service = InventoryService(db_session)
        service.apply_movement(flour, Decimal("-0.5"), "manual", notes="Bread")
        db_session.commit()
        db_session.refresh(flour)
        assert flour.current_quantity == Decimal("1.5")
        movement = db_session.query(StockMovement).filter(StockMovement.material_id == flour.id).one()
        assert movement.qty_delta == Decimal("-0.5")
        assert movement.unit == "kg"

    def test_movement_cannot_go_negative(self, db_session, flour):
        with pytest.raises(InsufficientStockError):
            InventoryService(db_session).apply_movement(flour, Decimal("-3"), "manual")

    def test_low_stock_alert_is_not_duplicated(self, db_session, flour):
        service = InventoryService(db_session)
        service.apply_movement(flour, Decimal("-1.6"), "manual")
        service.apply_movement(flour, Decimal("-0.4"), "manual")
        service.apply_movement(flour, Decimal("0.2"), "restock")
        db_session.commit()
        assert flour.status == "low_stock"
        alerts = [
            n for n in db_session.query(Notification).all()
            if (n.data or {}).get("alert") == "low_stock"
        ]
        assert len(alerts) == 1
        assert alerts[0].priority == "high"

    def test_out_of_stock_alert_is_not_duplicated(self, db_session, flour):
        service = InventoryService(db_session)
        service.apply_movement(flour, Decimal("-2"), "manual")
        service.apply_movement(flour, Decimal("0.1"), "restock")
        service.apply_movement(flour, Decimal("-0.1"), "manual")
        db_session.commit()
        assert flour.status == "out_of_stock"
        alerts = [
            n for n in db_session.query(Notification).all()
            if (n.data or {}).get("alert") == "out_of_stock"
        ]
        assert len(alerts) == 1
        assert alerts[0].priority == "urgent"

    def test_recovery_resolves_alert(self, db_session, flour):
        service = InventoryService(db_session)
        service.apply_movement(flour, Decimal("-1.8"), "manual")
        service.apply_movement(flour, Decimal("5"), "restock")
        db_session.commit()
        alert = next(n for n in db_session.query(Notification).all() if (n.data or {}).get("alert") == "low_stock")
        assert alert.read is True
        assert flour.status == "active"

    def test_out_of_stock_disables_and_restock_enables_items(self, db_session, flour, pizza):
        service = InventoryService(db_session)
        service.apply_movement(flour, Decimal("-2"), "waste")
        db_session.commit()
        db_session.refresh(pizza)
        assert flour.status == "out_of_stock"
        assert pizza.status == "out_of_stock"

        service.apply_movement(flour, Decimal("1"), "restock")
        db_session.commit()
        db_session.refresh(pizza)
        assert pizza.status == "active"
        assert flour.last_restocked is not None

    def test_inactive_items_stay_inactive(self, db_session, flour, pizza):
        pizza.status = "inactive"
        db_session.commit()
        service = InventoryService(db_session)
        service.apply_movement(flour, Decimal("-2"), "waste")
        service.apply_movement(flour, Decimal("1"), "restock")
        db_session.commit()
        db_session.refresh(pizza)
        assert pizza.status == "inactive"


# ============== Materials API ==============

class TestMaterialsCrud:
    def test_create_records_opening_stock(self, client, manager_headers, db_session):
        response = client.post(f"{API}/materials", headers=manager_headers, json={
            "name": "Olive Oil",
            "unit": "liter",
            "current_quantity": 5,
            "alert_limit": 1,
            "cost_per_unit": 12.5,
            "category": "food",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["unit"] == "l"
        assert data["current_quantity"] == 5.0
        assert data["status"] == "active"
        assert data["stock_value"] == 62.5
        movement = db_session.query(StockMovement).filter(StockMovement.material_id == data["id"]).one()
        assert movement.reason == "restock"

    def test_create_without_stock_is_out_of_stock(self, client, manager_headers):
        response = client.post(f"{API}/materials", headers=manager_headers, json={"name": "Lemons", "unit": "pcs"})
        assert response.status_code == 201
        assert response.json()["status"] == "out_of_stock"
        assert response.json()["unit"] == "piece"

    def test_create_unknown_unit(self, client, manager_headers):
        response = client.post(f"{API}/materials", headers=manager_headers, json={"name": "Air", "unit": "bucket"})
        assert response.status_code == 400
        assert "unit" in response.json()["detail"]

    def test_create_negative_quantity(self, client, manager_headers):
        response = client.post(f"{API}/materials", headers=manager_headers, json={
            "name": "Salt",
            "unit": "g",
            "current_quantity": -1,
        })
        assert response.status_code == 400

    def test_create_requires_manager(self, client, kitchen_headers):
        response = client.post(f"{API}/materials", headers=kitchen_headers, json={"name": "Salt", "unit": "g"})
        assert response.status_code == 403

    def test_list_and_filter(self, client, staff_headers, flour, coffee_beans, material_factory):
        material_factory("Sugar", "kg", "0")
        response = client.get(f"{API}/materials", headers=staff_headers)
        assert response.json()["total"] == 3
        response = client.get(f"{API}/materials", headers=staff_headers, params={"low_stock": True})
        assert [m["name"] for m in response.json()["items"]] == ["Sugar"]
        response = client.get(f"{API}/materials", headers=staff_headers, params={"search": "bean"})
        assert [m["name"] for m in response.json()["items"]] == ["Coffee Beans"]

    def test_list_bad_sort(self, client, staff_headers):
        response = client.get(f"{API}/materials", headers=staff_headers, params={"sort_by": "password"})
        assert response.status_code == 400

    def test_get_with_usage_stats(self, client, staff_headers, db_session, flour):
        InventoryService(db_session).apply_movement(flour, Decimal("-0.5"), "manual")
        db_session.commit()
        response = client.get(f"{API}/materials/{flour.id}", headers=staff_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["usage_stats"]["total_used"] == 0.5
        assert data["usage_stats"]["usage_count"] == 1
        assert len(data["recent_movements"]) == 1

    def test_update_quantity_is_adjustment(self, client, manager_headers, db_session, flour):
        response = client.put(f"{API}/materials/{flour.id}", headers=manager_headers, json={
            "current_quantity": 3,
            "notes": "Counted",
        })
        assert response.status_code == 200
        assert response.json()["current_quantity"] == 3.0
        movement = db_session.query(StockMovement).filter(StockMovement.material_id == flour.id).one()
        assert movement.reason == "adjustment"
        assert movement.qty_delta == Decimal("1")

    def test_update_threshold_rechecks_status(self, client, manager_headers, flour):
        response = client.put(f"{API}/materials/{flour.id}", headers=manager_headers, json={"alert_limit": 5})
        assert response.json()["status"] == "low_stock"

    def test_unit_change_rescales_stock(self, client, manager_headers, place_order, flour, pizza):
        response = client.put(f"{API}/materials/{flour.id}", headers=manager_headers, json={"unit": "g"})
        assert response.status_code == 200
        data = response.json()
        assert data["unit"] == "g"
        assert data["current_quantity"] == 2000.0
        assert data["min_limit"] == 200.0
        assert data["alert_limit"] == 500.0
        assert data["cost_per_unit"] == 0.0012
        assert data["stock_value"] == 2.4

        assert place_order([{"menu_item_id": pizza.id, "quantity": 1}]).status_code == 201
        response = client.get(f"{API}/materials/{flour.id}", headers=manager_headers)
        assert response.json()["current_quantity"] == 1750.0

    def test_unit_change_must_fit_recipes(self, client, manager_headers, db_session, flour, pizza):
        response = client.put(f"{API}/materials/{flour.id}", headers=manager_headers, json={"unit": "ml"})
        assert response.status_code == 400
        assert "Cannot convert" in response.json()["detail"]
        db_session.expire_all()
        material = db_session.get(Material, flour.id)
        assert material.unit == "kg"
        assert material.current_quantity == Decimal("2")

    def test_unit_change_across_categories_rejected(self, client, manager_headers, coffee_beans):
        response = client.put(f"{API}/materials/{coffee_beans.id}", headers=manager_headers, json={"unit": "piece"})
        assert response.status_code == 400

    def test_low_stock_filter_compares_alert_limit(self, client, staff_headers, material_factory):
        material_factory("Cream", "l", "3", min_limit="5")
        material_factory("Milk", "l", "1", alert_limit="2")
        response = client.get(f"{API}/materials", headers=staff_headers, params={"low_stock": True})
        assert [m["name"] for m in response.json()["items"]] == ["Milk"]

    def test_delete_used_material_rejected(self, client, manager_headers, flour, pizza):
        response = client.delete(f"{API}/materials/{flour.id}", headers=manager_headers)
        assert response.status_code == 400

    def test_delete(self, client, manager_headers, coffee_beans, db_session):
        response = client.delete(f"{API}/materials/{coffee_beans.id}", headers=manager_headers)
        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.get(Material, coffee_beans.id) is None


class TestStockOperations:
    def test_add(self, client, staff_headers, flour):
        response = client.patch(f"{API}/materials/{flour.id}/stock", headers=staff_headers, json={
            "operation": "add",
            "quantity": 1,
            "reason": "Delivery",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["material"]["current_quantity"] == 3.0
        assert data["movement"]["reason"] == "restock"

    def test_subtract(self, client, staff_headers, flour):
        response = client.patch(f"{API}/materials/{flour.id}/stock", headers=staff_headers, json={
            "operation": "subtract",
            "quantity": 0.5,
        })
        assert response.json()["material"]["current_quantity"] == 1.5
        assert response.json()["movement"]["reason"] == "adjustment"

    def test_set_same_value_is_noop(self, client, staff_headers, flour):
        response = client.patch(f"{API}/materials/{flour.id}/stock", headers=staff_headers, json={
            "operation": "set",
            "quantity": 2,
        })
        assert response.status_code == 200
        assert response.json()["movement"] is None

    def test_subtract_below_zero(self, client, staff_headers, flour):
        response = client.patch(f"{API}/materials/{flour.id}/stock", headers=staff_headers, json={
            "operation": "subtract",
            "quantity": 10,
        })
        assert response.status_code == 400

    def test_unknown_operation(self, client, staff_headers, flour):
        response = client.patch(f"{API}/materials/{flour.id}/stock", headers=staff_headers, json={
            "operation": "multiply",
            "quantity": 2,
        })
        assert response.status_code == 400

    def test_restock_notifies_managers(self, client, staff_headers, db_session, flour):
        client.patch(f"{API}/materials/{flour.id}/stock", headers=staff_headers, json={
            "operation": "add",
            "quantity": 4,
        })
        restocks = [n for n in db_session.query(Notification).all() if (n.data or {}).get("alert") == "restock"]
        assert len(restocks) == 1
        assert restocks[0].target_roles == ["admin", "manager"]

    def test_bulk_update(self, client, manager_headers, flour, coffee_beans):
        response = client.post(f"{API}/materials/bulk-update", headers=manager_headers, json={
            "updates": [
                {"id": flour.id, "operation": "set", "quantity": 10},
                {"id": coffee_beans.id, "operation": "add", "quantity": 500},
            ],
        })
        assert response.status_code == 200
        assert response.json()["updated_count"] == 2

    def test_bulk_update_is_all_or_nothing(self, client, manager_headers, db_session, flour, coffee_beans):
        response = client.post(f"{API}/materials/bulk-update", headers=manager_headers, json={
            "updates": [
                {"id": flour.id, "operation": "set", "quantity": 10},
                {"id": coffee_beans.id, "operation": "subtract", "quantity": 5000},
            ],
        })
        assert response.status_code == 400
        db_session.expire_all()
        assert db_session.get(Material, flour.id).current_quantity == Decimal("2")
        assert db_session.query(StockMovement).count() == 0

    def test_bulk_update_unknown_material(self, client, manager_headers, flour):
        response = client.post(f"{API}/materials/bulk-update", headers=manager_headers, json={
            "updates": [{"id": 9999, "operation": "add", "quantity": 1}],
        })
        assert response.status_code == 404


class TestUsage:
    def test_record_usage_converts_units(self, client, kitchen_headers, flour):
        response = client.post(f"{API}/materials/usage", headers=kitchen_headers, json={
            "material_id": flour.id,
            "quantity": 500,
            "unit": "g",
            "usage_type": "waste",
            "reason": "Spilled",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["material"]["current_quantity"] == 1.5
        assert data["usage"]["usage_type"] == "waste"
        assert data["usage"]["department"] == "kitchen"
        assert data["usage"]["quantity"] == 0.5

    def test_usage_more_than_stock(self, client, kitchen_headers, flour):
        response = client.post(f"{API}/materials/usage", headers=kitchen_headers, json={
            "material_id": flour.id,
            "quantity": 3,
        })
        assert response.status_code == 400
        assert "Insufficient stock" in response.json()["detail"]

    def test_usage_incompatible_unit(self, client, kitchen_headers, flour):
        response = client.post(f"{API}/materials/usage", headers=kitchen_headers, json={
            "material_id": flour.id,
            "quantity": 3,
            "unit": "ml",
        })
        assert response.status_code == 400

    def test_usage_type_restricted(self, client, kitchen_headers, flour):
        response = client.post(f"{API}/materials/usage", headers=kitchen_headers, json={
            "material_id": flour.id,
            "quantity": 1,
            "usage_type": "restock",
        })
        assert response.status_code == 422

    def test_list_usage(self, client, kitchen_headers, flour, coffee_beans):
        for material_id, qty in ((flour.id, 0.1), (coffee_beans.id, 20)):
            client.post(f"{API}/materials/usage", headers=kitchen_headers, json={
                "material_id": material_id,
                "quantity": qty,
            })
        response = client.get(f"{API}/materials/usage", headers=kitchen_headers, params={"material_id": flour.id})
        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["items"][0]["material_name"] == "Flour"

    def test_list_usage_bad_date(self, client, kitchen_headers):
        response = client.get(f"{API}/materials/usage", headers=kitchen_headers, params={"from": "yesterday"})
        assert response.status_code == 400


class TestAlerts:
    def test_alerts(self, client, staff_headers, material_factory):
        material_factory("Milk", "l", "0")
        material_factory("Cream", "l", "1", alert_limit="2")
        material_factory("Cheese", "kg", "5", expiry_date=datetime.now(timezone.utc) + timedelta(days=2))
        material_factory("Rice", "kg", "10")

        response = client.get(f"{API}/materials/alerts", headers=staff_headers)
        assert response.status_code == 200
        data = response.json()
        types = {(a["material_name"], a["type"]) for a in data["alerts"]}
        assert types == {
            ("Milk", "out_of_stock"),
            ("Cream", "low_stock"),
            ("Cheese", "expiring_soon"),
        }
        assert data["alerts"][0]["severity"] == "critical"
        assert data["critical"] == 1
        assert data["warnings"] == 2
