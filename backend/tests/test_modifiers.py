"""Tests for modifier groups and how they price order lines."""

import pytest
from decimal import Decimal

from app.models.menu import MenuItem
from app.models.modifier import Modifier, ModifierOption

API = "/api/v1"


@pytest.fixture
def size(db_session) -> Modifier:
    modifier = Modifier(name="Size", type="single", required=True, sort_order=0)
    modifier.options = [
        ModifierOption(name="Regular", price=Decimal("0"), is_default=True, sort_order=0),
        ModifierOption(name="Large", price=Decimal("8"), sort_order=1),
    ]
    modifier.apply_selection_rules()
    db_session.add(modifier)
    db_session.commit()
    return modifier


@pytest.fixture
def extras(db_session) -> Modifier:
    modifier = Modifier(name="Extras", type="multiple", max_selections=2, sort_order=1)
    modifier.options = [
        ModifierOption(name="Cheese", price=Decimal("5"), sort_order=0),
        ModifierOption(name="Olives", price=Decimal("3"), sort_order=1),
        ModifierOption(name="Basil", price=Decimal("2"), sort_order=2),
    ]
    db_session.add(modifier)
    db_session.commit()
    return modifier


@pytest.fixture
def dressed_pizza(db_session, pizza, size, extras) -> MenuItem:
    pizza.modifiers = [extras, size]
    db_session.commit()
    return pizza


def option(modifier: Modifier, name: str) -> int:
    return next(o.id for o in modifier.options if o.name == name)


# ============== Selection rules ==============

class TestSelectionRules:
    def test_single_allows_one_pick(self):
        modifier = Modifier(name="Sauce", type="single", min_selections=2, max_selections=5)
        modifier.apply_selection_rules()
        assert modifier.min_selections is None
        assert modifier.max_selections == 1

    def test_required_single_gets_default(self):
        modifier = Modifier(name="Sauce", type="single", required=True)
        modifier.options = [ModifierOption(name="Harissa"), ModifierOption(name="Garlic")]
        modifier.apply_selection_rules()
        assert [o.is_default for o in modifier.options] == [True, False]

    def test_multiple_bounds_checked(self):
        modifier = Modifier(name="Toppings", type="multiple", min_selections=3, max_selections=2)
        with pytest.raises(ValueError, match="min_selections"):
            modifier.apply_selection_rules()


# ============== CRUD ==============

class TestModifierCrud:
    def test_create(self, client, manager_headers):
        response = client.post(f"{API}/modifiers", headers=manager_headers, json={
            "name": "Milk",
            "type": "single",
            "required": True,
            "max_selections": 3,
            "options": [{"name": "Whole"}, {"name": "Oat", "price": "4.50"}],
        })
        assert response.status_code == 201
        data = response.json()
        assert data["max_selections"] == 1
        assert [(o["name"], o["price"], o["is_default"]) for o in data["options"]] == [
            ("Whole", 0.0, True),
            ("Oat", 4.5, False),
        ]

    def test_create_needs_options(self, client, manager_headers):
        response = client.post(f"{API}/modifiers", headers=manager_headers, json={"name": "Empty", "options": []})
        assert response.status_code == 422

    def test_create_bad_bounds(self, client, manager_headers):
        response = client.post(f"{API}/modifiers", headers=manager_headers, json={
            "name": "Toppings",
            "type": "multiple",
            "min_selections": 4,
            "max_selections": 2,
            "options": [{"name": "Mushrooms"}],
        })
        assert response.status_code == 422

    def test_create_requires_manager(self, client, staff_headers):
        response = client.post(f"{API}/modifiers", headers=staff_headers, json={
            "name": "Milk", "options": [{"name": "Whole"}],
        })
        assert response.status_code == 403

    def test_public_listing_hides_inactive(self, client, db_session, size, extras):
        extras.is_active = False
        db_session.commit()
        response = client.get(f"{API}/modifiers")
        assert response.status_code == 200
        assert [m["name"] for m in response.json()["items"]] == ["Size"]

    def test_update_replaces_options(self, client, manager_headers, extras):
        response = client.put(f"{API}/modifiers/{extras.id}", headers=manager_headers, json={
            "options": [{"name": "Anchovies", "price": 6}],
        })
        assert response.status_code == 200
        assert [o["name"] for o in response.json()["options"]] == ["Anchovies"]

    def test_update_bounds_against_stored_maximum(self, client, manager_headers, extras):
        response = client.put(f"{API}/modifiers/{extras.id}", headers=manager_headers, json={"min_selections": 3})
        assert response.status_code == 400
        assert "min_selections" in response.json()["detail"]

    def test_delete_detaches_from_menu_items(self, client, manager_headers, db_session, dressed_pizza, extras):
        response = client.delete(f"{API}/modifiers/{extras.id}", headers=manager_headers)
        assert response.status_code == 200
        db_session.expire_all()
        assert [m.name for m in db_session.get(MenuItem, dressed_pizza.id).modifiers] == ["Size"]
        assert db_session.query(ModifierOption).filter(ModifierOption.modifier_id == extras.id).count() == 0

    def test_missing(self, client):
        assert client.get(f"{API}/modifiers/999").status_code == 404


class TestMenuItemModifiers:
    def test_create_item_with_modifiers(self, client, manager_headers, kitchen_category, size, extras):
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={
            "name": "Calzone",
            "price": "38.00",
            "category_id": kitchen_category.id,
            "modifier_ids": [extras.id, size.id],
        })
        assert response.status_code == 201
        assert [m["name"] for m in response.json()["modifiers"]] == ["Size", "Extras"]

    def test_unknown_modifier(self, client, manager_headers, pizza):
        response = client.put(f"{API}/menu-items/{pizza.id}", headers=manager_headers, json={"modifier_ids": [999]})
        assert response.status_code == 400

    def test_update_clears_modifiers(self, client, manager_headers, dressed_pizza):
        response = client.put(f"{API}/menu-items/{dressed_pizza.id}", headers=manager_headers, json={"modifier_ids": []})
        assert response.status_code == 200
        assert response.json()["modifiers"] == []


# ============== Order pricing ==============

class TestModifierPricing:
    def test_options_add_to_unit_price(self, place_order, dressed_pizza, size, extras):
        response = place_order([{
            "menu_item_id": dressed_pizza.id,
            "quantity": 2,
            "modifiers": [
                {"modifier_id": size.id, "option_ids": [option(size, "Large")]},
                {"modifier_id": extras.id, "option_ids": [option(extras, "Cheese"), option(extras, "Olives")]},
            ],
        }])
        assert response.status_code == 201
        line = response.json()["items"][0]
        assert line["unit_price"] == 56.0
        assert line["total_price"] == 112.0
        assert line["customizations"] == ["Size: Large", "Extras: Cheese", "Extras: Olives"]
        assert response.json()["total_amount"] == 112.0

    def test_required_group_falls_back_to_default(self, place_order, dressed_pizza):
        response = place_order([{"menu_item_id": dressed_pizza.id, "quantity": 1, "customizations": ["Well done"]}])
        assert response.status_code == 201
        line = response.json()["items"][0]
        assert line["unit_price"] == 40.0
        assert line["customizations"] == ["Size: Regular", "Well done"]

    def test_required_group_without_default(self, place_order, db_session, dressed_pizza, size):
        for o in size.options:
            o.is_default = False
        db_session.commit()
        response = place_order([{"menu_item_id": dressed_pizza.id, "quantity": 1}])
        assert response.status_code == 400
        assert response.json()["detail"] == "'Size' requires a selection"

    def test_too_many_picks(self, place_order, dressed_pizza, extras):
        response = place_order([{
            "menu_item_id": dressed_pizza.id,
            "quantity": 1,
            "modifiers": [{"modifier_id": extras.id, "option_ids": [o.id for o in extras.options]}],
        }])
        assert response.status_code == 400
        assert "at most 2" in response.json()["detail"]

    def test_option_from_other_group(self, place_order, dressed_pizza, size, extras):
        response = place_order([{
            "menu_item_id": dressed_pizza.id,
            "quantity": 1,
            "modifiers": [{"modifier_id": size.id, "option_ids": [option(extras, "Cheese")]}],
        }])
        assert response.status_code == 400
        assert "does not belong" in response.json()["detail"]

    def test_group_not_on_item(self, place_order, pizza, extras):
        response = place_order([{
            "menu_item_id": pizza.id,
            "quantity": 1,
            "modifiers": [{"modifier_id": extras.id, "option_ids": [option(extras, "Cheese")]}],
        }])
        assert response.status_code == 400
        assert "not available" in response.json()["detail"]

    def test_inactive_group_ignored(self, place_order, db_session, dressed_pizza, size):
        size.is_active = False
        db_session.commit()
        response = place_order([{"menu_item_id": dressed_pizza.id, "quantity": 1}])
        assert response.status_code == 201
        assert response.json()["items"][0]["customizations"] == []

    def test_free_text_line_rejects_modifiers(self, place_order, extras):
        response = place_order([{
            "name": "Special",
            "unit_price": "20.00",
            "quantity": 1,
            "modifiers": [{"modifier_id": extras.id, "option_ids": []}],
        }])
        assert response.status_code == 400
