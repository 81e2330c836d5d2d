"""Tests for tax and site settings."""

from decimal import Decimal

import pytest

from app.models.settings import DEFAULT_THEME, TaxSettings
from app.services.settings_service import get_tax_settings

API = "/api/v1"


class TestTaxSettings:
    def test_defaults_are_public(self, client):
        response = client.get(f"{API}/tax-settings")
        assert response.status_code == 200
        data = response.json()
        assert data["tax_type"] == "VAT"
        assert data["vat_rate"] == 15.0
        assert data["include_tax_in_price"] is True
        assert data["enable_tax_handling"] is True

    def test_singleton(self, db_session):
        first = get_tax_settings(db_session)
        db_session.commit()
        assert get_tax_settings(db_session).id == first.id
        assert db_session.query(TaxSettings).count() == 1

    def test_update_requires_admin(self, client, manager_headers):
        response = client.put(f"{API}/tax-settings", headers=manager_headers, json={"vat_rate": 5})
        assert response.status_code == 403

    def test_update(self, client, admin_headers):
        response = client.put(f"{API}/tax-settings", headers=admin_headers, json={
            "tax_type": "GST",
            "vat_rate": 10,
            "include_tax_in_price": False,
            "tax_number": "300123456700003",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["tax_type"] == "GST"
        assert data["vat_rate"] == 10.0
        assert data["tax_number"] == "300123456700003"
        assert client.get(f"{API}/tax-settings").json()["include_tax_in_price"] is False

    @pytest.mark.parametrize("payload", [
        {"vat_rate": 101},
        {"vat_rate": -1},
        {"tax_type": "INCOME"},
    ])
    def test_invalid(self, client, admin_headers, payload):
        response = client.put(f"{API}/tax-settings", headers=admin_headers, json=payload)
        assert response.status_code == 422

    def test_model_rejects_bad_rate(self):
        with pytest.raises(ValueError):
            TaxSettings(vat_rate=Decimal("150"))

    def test_disabled_tax_applies_to_orders(self, client, admin_headers, place_order, pizza):
        client.put(f"{API}/tax-settings", headers=admin_headers, json={"enable_tax_handling": False})
        data = place_order([{"menu_item_id": pizza.id, "quantity": 1}]).json()
        assert data["tax_amount"] == 0.0
        assert data["total_amount"] == 40.0


class TestSiteSettings:
    def test_defaults_are_public(self, client):
        response = client.get(f"{API}/site-settings")
        assert response.status_code == 200
        data = response.json()
        assert data["theme"] == DEFAULT_THEME
        assert data["restaurant_name"]

    def test_update_merges_theme_and_contact(self, client, admin_headers):
        response = client.put(f"{API}/site-settings", headers=admin_headers, json={
            "restaurant_name": "Cafe Nour",
            "theme": {"primary": "#FF0000"},
            "contact": {"phone": "+966 11 000 0000"},
        })
        assert response.status_code == 200
        data = response.json()
        assert data["restaurant_name"] == "Cafe Nour"
        assert data["theme"]["primary"] == "#ff0000"
        assert data["theme"]["secondary"] == DEFAULT_THEME["secondary"]
        assert data["contact"]["phone"] == "+966 11 000 0000"

        response = client.put(f"{API}/site-settings", headers=admin_headers, json={
            "contact": {"address": "King Fahd Rd"},
        })
        contact = response.json()["contact"]
        assert contact["phone"] == "+966 11 000 0000"
        assert contact["address"] == "King Fahd Rd"

    def test_invalid_color(self, client, admin_headers):
        response = client.put(f"{API}/site-settings", headers=admin_headers, json={"theme": {"accent": "orange"}})
        assert response.status_code == 422

    def test_invalid_logo_position(self, client, admin_headers):
        response = client.put(f"{API}/site-settings", headers=admin_headers, json={"logo_position": "top"})
        assert response.status_code == 422

    def test_update_requires_admin(self, client, staff_headers):
        response = client.put(f"{API}/site-settings", headers=staff_headers, json={"restaurant_name": "X"})
        assert response.status_code == 403

    def test_reset(self, client, admin_headers):
        client.put(f"{API}/site-settings", headers=admin_headers, json={
            "layout_template": "modern",
            "theme": {"primary": "#000000"},
        })
        response = client.post(f"{API}/site-settings/reset", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["layout_template"] == "classic"
        assert data["theme"] == DEFAULT_THEME
