"""Tests for the menu catalog: categories, menu items and their recipes."""

from app.models.menu import MenuItem, MenuItemIngredient

API = "/api/v1"


# ============== Categories ==============

class TestCategories:
    def test_public_listing(self, client, kitchen_category, drinks_category, pizza):
        response = client.get(f"{API}/categories")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [c["name"] for c in data["items"]] == ["Mains", "Hot Drinks"]
        assert data["items"][0]["item_count"] == 1

    def test_inactive_hidden_by_default(self, client, db_session, kitchen_category):
        kitchen_category.is_active = False
        db_session.commit()
        assert client.get(f"{API}/categories").json()["total"] == 0
        response = client.get(f"{API}/categories", params={"include_inactive": True})
        assert response.json()["total"] == 1

    def test_filter_by_department(self, client, kitchen_category, drinks_category):
        response = client.get(f"{API}/categories", params={"department": "barista"})
        assert [c["name"] for c in response.json()["items"]] == ["Hot Drinks"]

    def test_create_requires_manager(self, client, staff_headers):
        response = client.post(f"{API}/categories", headers=staff_headers, json={"name": "Desserts"})
        assert response.status_code == 403

    def test_create(self, client, manager_headers):
        response = client.post(f"{API}/categories", headers=manager_headers, json={
            "name": "Shisha",
            "department": "shisha",
            "color": "#AABBCC",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["department"] == "shisha"
        assert data["color"] == "#aabbcc"

    def test_create_invalid_department(self, client, manager_headers):
        response = client.post(f"{API}/categories", headers=manager_headers, json={
            "name": "Bar",
            "department": "bar",
        })
        assert response.status_code == 422

    def test_create_invalid_color(self, client, manager_headers):
        response = client.post(f"{API}/categories", headers=manager_headers, json={
            "name": "Bar",
            "color": "red",
        })
        assert response.status_code == 422

    def test_name_is_escaped(self, client, manager_headers):
        response = client.post(f"{API}/categories", headers=manager_headers, json={
            "name": "<script>alert(1)</script>",
        })
        assert response.status_code == 201
        assert "<script>" not in response.json()["name"]

    def test_update(self, client, manager_headers, kitchen_category):
        response = client.put(f"{API}/categories/{kitchen_category.id}", headers=manager_headers, json={
            "name": "Main Courses",
            "sort_order": 5,
        })
        assert response.status_code == 200
        assert response.json()["name"] == "Main Courses"
        assert response.json()["sort_order"] == 5

    def test_delete_with_items_rejected(self, client, manager_headers, kitchen_category, pizza):
        response = client.delete(f"{API}/categories/{kitchen_category.id}", headers=manager_headers)
        assert response.status_code == 400

    def test_delete_empty(self, client, manager_headers, drinks_category):
        response = client.delete(f"{API}/categories/{drinks_category.id}", headers=manager_headers)
        assert response.status_code == 200
        assert client.get(f"{API}/categories/{drinks_category.id}").status_code == 404


# ============== Menu items ==============

class TestMenuItemsRead:
    def test_public_listing(self, client, pizza, espresso):
        response = client.get(f"{API}/menu-items")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        names = {i["name"] for i in data["items"]}
        assert names == {"Margherita", "Espresso"}

    def test_department_follows_category(self, client, pizza, espresso):
        response = client.get(f"{API}/menu-items", params={"department": "barista"})
        items = response.json()["items"]
        assert [i["name"] for i in items] == ["Espresso"]
        assert items[0]["department"] == "barista"

    def test_item_department_overrides_category(self, client, db_session, pizza):
        pizza.department = "shisha"
        db_session.commit()
        response = client.get(f"{API}/menu-items", params={"department": "shisha"})
        assert [i["name"] for i in response.json()["items"]] == ["Margherita"]
        response = client.get(f"{API}/menu-items", params={"department": "kitchen"})
        assert response.json()["total"] == 0

    def test_search(self, client, pizza, espresso):
        response = client.get(f"{API}/menu-items", params={"search": "marg"})
        assert [i["name"] for i in response.json()["items"]] == ["Margherita"]

    def test_search_wildcards_are_literal(self, client, pizza):
        response = client.get(f"{API}/menu-items", params={"search": "%"})
        assert response.json()["total"] == 0

    def test_get_includes_recipe(self, client, pizza, flour):
        response = client.get(f"{API}/menu-items/{pizza.id}")
        assert response.status_code == 200
        data = response.json()
        assert data["category_name"] == "Mains"
        assert data["is_orderable"] is True
        assert data["ingredients"] == [{
            "id": pizza.ingredients[0].id,
            "material_id": flour.id,
            "material_name": "Flour",
            "portion": 250.0,
            "unit": "g",
            "required": True,
        }]

    def test_get_missing(self, client):
        assert client.get(f"{API}/menu-items/424242").status_code == 404


class TestMenuItemsWrite:
    def test_create_with_recipe(self, client, manager_headers, kitchen_category, flour):
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={
            "name": "Focaccia",
            "price": 25,
            "discount_price": 20,
            "category_id": kitchen_category.id,
            "ingredients": [{"material_id": flour.id, "portion": 0.2, "unit": "kilogram"}],
        })
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "active"
        assert data["effective_price"] == 20.0
        assert data["ingredients"][0]["unit"] == "kg"

    def test_create_out_of_stock_when_ingredient_empty(self, client, manager_headers, material_factory):
        empty = material_factory("Saffron", "g", "0")
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={
            "name": "Saffron Rice",
            "price": 60,
            "ingredients": [{"material_id": empty.id, "portion": 1, "unit": "g"}],
        })
        assert response.status_code == 201
        assert response.json()["status"] == "out_of_stock"
        assert response.json()["is_orderable"] is False

    def test_optional_ingredient_does_not_block(self, client, manager_headers, material_factory):
        empty = material_factory("Mint", "g", "0")
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={
            "name": "Tea",
            "price": 8,
            "ingredients": [{"material_id": empty.id, "portion": 5, "unit": "g", "required": False}],
        })
        assert response.json()["status"] == "active"

    def test_incompatible_unit_rejected(self, client, manager_headers, flour):
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={
            "name": "Flour Soup",
            "price": 10,
            "ingredients": [{"material_id": flour.id, "portion": 100, "unit": "ml"}],
        })
        assert response.status_code == 400
        assert "not compatible" in response.json()["detail"]

    def test_unknown_material_rejected(self, client, manager_headers):
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={
            "name": "Mystery",
            "price": 10,
            "ingredients": [{"material_id": 999, "portion": 1, "unit": "g"}],
        })
        assert response.status_code == 400

    def test_unknown_category_rejected(self, client, manager_headers):
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={
            "name": "Orphan",
            "price": 10,
            "category_id": 999,
        })
        assert response.status_code == 400

    def test_price_must_be_positive(self, client, manager_headers):
        response = client.post(f"{API}/menu-items", headers=manager_headers, json={"name": "Free", "price": 0})
        assert response.status_code == 422

    def test_update_replaces_recipe(self, client, manager_headers, pizza, coffee_beans, db_session):
        response = client.put(f"{API}/menu-items/{pizza.id}", headers=manager_headers, json={
            "price": 45,
            "ingredients": [{"material_id": coffee_beans.id, "portion": 10, "unit": "g"}],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["price"] == 45.0
        assert [i["material_name"] for i in data["ingredients"]] == ["Coffee Beans"]
        assert db_session.query(MenuItemIngredient).filter(MenuItemIngredient.menu_item_id == pizza.id).count() == 1

    def test_deactivate(self, client, manager_headers, pizza):
        response = client.put(f"{API}/menu-items/{pizza.id}", headers=manager_headers, json={"status": "inactive"})
        assert response.json()["status"] == "inactive"
        assert response.json()["is_orderable"] is False

    def test_delete(self, client, manager_headers, pizza, db_session):
        response = client.delete(f"{API}/menu-items/{pizza.id}", headers=manager_headers)
        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.get(MenuItem, pizza.id) is None
        assert db_session.query(MenuItemIngredient).count() == 0


# ============== Units ==============

class TestUnits:
    def test_list_units(self, client, staff_headers):
        response = client.get(f"{API}/units", headers=staff_headers)
        assert response.status_code == 200
        groups = {g["category"]: g for g in response.json()["categories"]}
        assert set(groups) == {"weight", "volume", "count"}
        assert groups["weight"]["base_unit"] == "g"
        assert {"unit": "kg", "factor": 1000.0} in groups["weight"]["units"]

    def test_convert(self, client, staff_headers):
        response = client.get(f"{API}/units/convert", headers=staff_headers, params={
            "quantity": 1.5,
            "from": "kg",
            "to": "g",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["result"] == 1500.0
        assert data["category"] == "weight"

    def test_convert_aliases(self, client, staff_headers):
        response = client.get(f"{API}/units/convert", headers=staff_headers, params={
            "quantity": 2,
            "from": "litres",
            "to": "ml",
        })
        assert response.json()["result"] == 2000.0

    def test_convert_incompatible(self, client, staff_headers):
        response = client.get(f"{API}/units/convert", headers=staff_headers, params={
            "quantity": 1,
            "from": "kg",
            "to": "ml",
        })
        assert response.status_code == 400

    def test_units_require_login(self, client):
        assert client.get(f"{API}/units").status_code == 401
