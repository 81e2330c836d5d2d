"""Tests for QR code management and scan tracking."""

import base64

import pytest

from app.models.qr_code import QRScan
from app.services.qr_service import detect_device_type

API = "/api/v1"

IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148"
IPAD_UA = "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)"
ANDROID_TABLET_UA = "Mozilla/5.0 (Linux; Android 13; SM-X700) Safari/537.36"


@pytest.fixture
def table_qr(client, manager_headers):
    response = client.post(f"{API}/qrcodes", headers=manager_headers, json={
        "name": "Table 4",
        "table_number": "4",
    })
    assert response.status_code == 201
    return response.json()


class TestDeviceDetection:
    @pytest.mark.parametrize("ua,expected", [
        (IPHONE_UA, "mobile"),
        (IPAD_UA, "tablet"),
        (ANDROID_TABLET_UA, "tablet"),
        ("Mozilla/5.0 (Linux; Android 13; Pixel 7) Mobile Safari/537.36", "mobile"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "desktop"),
        (None, "desktop"),
    ])
    def test_detect(self, ua, expected):
        assert detect_device_type(ua) == expected


class TestQRCodes:
    def test_create_defaults(self, table_qr):
        assert table_qr["type"] == "table"
        assert table_qr["token"]
        assert table_qr["token"] in table_qr["url"]
        assert table_qr["total_scans"] == 0
        assert table_qr["image"].startswith("data:image/png;base64,")
        png = base64.b64decode(table_qr["image"].split(",", 1)[1])
        assert png.startswith(b"\x89PNG")

    def test_create_with_custom_url(self, client, manager_headers):
        response = client.post(f"{API}/qrcodes", headers=manager_headers, json={
            "name": "Instagram",
            "type": "custom",
            "url": "https://example.com/menu",
            "customization": {"foreground_color": "#112233", "error_correction": "H"},
        })
        assert response.status_code == 201
        data = response.json()
        assert data["url"] == "https://example.com/menu"
        assert data["customization"]["foreground_color"] == "#112233"
        assert data["customization"]["size"] == 300

    def test_create_rejects_non_http_url(self, client, manager_headers):
        response = client.post(f"{API}/qrcodes", headers=manager_headers, json={
            "name": "Bad", "url": "javascript:alert(1)",
        })
        assert response.status_code == 422

    def test_create_requires_manager(self, client, staff_headers):
        response = client.post(f"{API}/qrcodes", headers=staff_headers, json={"name": "T1"})
        assert response.status_code == 403

    def test_update_and_delete(self, client, manager_headers, table_qr):
        response = client.put(f"{API}/qrcodes/{table_qr['id']}", headers=manager_headers, json={
            "name": "Table 5", "table_number": "5",
        })
        assert response.json()["name"] == "Table 5"
        assert response.json()["token"] == table_qr["token"]

        response = client.delete(f"{API}/qrcodes/{table_qr['id']}", headers=manager_headers)
        assert response.status_code == 200
        assert client.get(f"{API}/qrcodes/{table_qr['id']}", headers=manager_headers).status_code == 404

    def test_images(self, client, manager_headers, table_qr):
        response = client.get(f"{API}/qrcodes/{table_qr['id']}/image", headers=manager_headers)
        assert response.headers["content-type"] == "image/png"
        response = client.get(
            f"{API}/qrcodes/{table_qr['id']}/image", headers=manager_headers, params={"format": "svg"}
        )
        assert response.headers["content-type"].startswith("image/svg+xml")
        assert b"<svg" in response.content


class TestScans:
    def test_scan_is_public(self, client, table_qr, db_session):
        response = client.post(
            f"{API}/qrcodes/scan", json={"token": table_qr["token"]}, headers={"User-Agent": IPHONE_UA}
        )
        assert response.status_code == 200
        data = response.json()
        assert data == {
            "url": table_qr["url"],
            "type": "table",
            "target_id": None,
            "table_number": "4",
        }
        scan = db_session.query(QRScan).one()
        assert scan.device_type == "mobile"

    def test_scan_requires_token(self, client):
        assert client.post(f"{API}/qrcodes/scan", json={}).status_code == 400

    def test_scan_unknown_token(self, client):
        assert client.post(f"{API}/qrcodes/scan", json={"token": "nope"}).status_code == 404

    def test_scan_inactive(self, client, manager_headers, table_qr):
        client.put(f"{API}/qrcodes/{table_qr['id']}", headers=manager_headers, json={"is_active": False})
        assert client.post(f"{API}/qrcodes/scan", json={"token": table_qr["token"]}).status_code == 404

    def test_analytics(self, client, manager_headers, table_qr):
        for ua in (IPHONE_UA, IPHONE_UA, IPAD_UA):
            client.post(f"{API}/qrcodes/scan", json={"token": table_qr["token"]}, headers={"User-Agent": ua})

        qr = client.get(f"{API}/qrcodes/{table_qr['id']}", headers=manager_headers).json()
        assert qr["total_scans"] == 3
        assert qr["last_scanned_at"] is not None

        data = client.get(f"{API}/qrcodes/{table_qr['id']}/analytics", headers=manager_headers).json()
        assert data["period_scans"] == 3
        assert data["device_types"] == {"mobile": 2, "tablet": 1}
        assert len(data["scans_by_hour"]) == 24
        assert sum(d["scans"] for d in data["scans_by_day"]) == 3
