"""Tests for receipt printers, print jobs and ESC/POS ticket rendering."""

import asyncio

import pytest

from app.models.order import Order
from app.models.printer import Printer, PrintJob
from app.services import print_service
from app.services.print_service import ESC, PrintJobError, PrintJobService, TicketFormatter, generate_job_id

API = "/api/v1"


@pytest.fixture
def sent(monkeypatch):
    """Capture payloads instead of opening sockets."""
    payloads = []

    async def fake_send(printer, payload):
        payloads.append((printer.name, payload))

    monkeypatch.setattr(print_service, "send_to_printer", fake_send)
    return payloads


@pytest.fixture
def broken_printer_link(monkeypatch):
    async def fake_send(printer, payload):
        raise PrintJobError(f"Could not reach {printer.ip_address}:{printer.port}: timed out")

    monkeypatch.setattr(print_service, "send_to_printer", fake_send)


@pytest.fixture
def make_printer(db_session):
    def _make(name="Kitchen Printer", department="kitchen", **kwargs) -> Printer:
        kwargs.setdefault("connection_type", "LAN")
        kwargs.setdefault("ip_address", "192.168.1.50")
        printer = Printer(name=name, department=department, **kwargs)
        db_session.add(printer)
        db_session.commit()
        db_session.refresh(printer)
        return printer
    return _make


@pytest.fixture
def mixed_order(place_order, pizza, espresso):
    response = place_order(
        [{"menu_item_id": pizza.id, "quantity": 1}, {"menu_item_id": espresso.id, "quantity": 2}],
        table_number="T7",
    )
    assert response.status_code == 201
    return response.json()


class TestTicketFormatter:
    def test_job_id_format(self):
        job_id = generate_job_id()
        assert job_id.startswith("job_")
        assert len(job_id.split("_")) == 3

    def test_order_ticket(self):
        ticket = {
            "order_number": "#12345678",
            "table_number": "T1",
            "department": "kitchen",
            "customer_name": "Guest",
            "items": [{"name": "Margherita", "quantity": 2, "unit_price": 40.0, "total_price": 80.0,
                       "customizations": ["no basil"], "notes": None}],
            "total_amount": 80.0,
        }
        payload = TicketFormatter(58).build_order_ticket(ticket, restaurant_name="Test Bistro")
        assert payload.startswith(ESC.INIT)
        assert b"#12345678" in payload
        assert b"Margherita" in payload
        assert ESC.CUT_PARTIAL in payload

    def test_no_cut_when_disabled(self):
        payload = TicketFormatter(80, {"paper_cut": False}).build_test_page("Bar")
        assert ESC.CUT_PARTIAL not in payload


class TestPrintersApi:
    def test_create(self, client, manager_headers):
        response = client.post(f"{API}/printers", headers=manager_headers, json={
            "name": "Bar Printer",
            "department": "barista",
            "connection_type": "LAN",
            "ip_address": "10.0.0.20",
            "paper_width": 58,
            "settings": {"copies": 2},
        })
        assert response.status_code == 201
        data = response.json()
        assert data["port"] == 9100
        assert data["settings"]["copies"] == 2
        assert data["settings"]["font_size"] == "medium"

    def test_create_requires_address(self, client, manager_headers):
        response = client.post(f"{API}/printers", headers=manager_headers, json={
            "name": "USB", "connection_type": "USB",
        })
        assert response.status_code == 422

    def test_create_invalid_ip(self, client, manager_headers):
        response = client.post(f"{API}/printers", headers=manager_headers, json={
            "name": "LAN", "connection_type": "LAN", "ip_address": "999.1.1.1",
        })
        assert response.status_code == 422

    def test_duplicate_name(self, client, manager_headers, make_printer):
        make_printer()
        response = client.post(f"{API}/printers", headers=manager_headers, json={
            "name": "Kitchen Printer", "connection_type": "LAN", "ip_address": "10.0.0.21",
        })
        assert response.status_code == 409

    def test_staff_can_list_but_not_create(self, client, staff_headers, make_printer):
        make_printer()
        assert client.get(f"{API}/printers", headers=staff_headers).json()["total"] == 1
        response = client.post(f"{API}/printers", headers=staff_headers, json={
            "name": "X", "connection_type": "LAN", "ip_address": "10.0.0.2",
        })
        assert response.status_code == 403

    def test_update_merges_settings(self, client, manager_headers, make_printer):
        printer = make_printer()
        response = client.put(f"{API}/printers/{printer.id}", headers=manager_headers, json={
            "settings": {"buzzer": True},
        })
        assert response.status_code == 200
        assert response.json()["settings"]["buzzer"] is True
        assert response.json()["settings"]["copies"] == 1

    def test_update_connection_checked(self, client, manager_headers, make_printer):
        printer = make_printer()
        response = client.put(f"{API}/printers/{printer.id}", headers=manager_headers, json={
            "connection_type": "USB",
        })
        assert response.status_code == 400

    def test_delete(self, client, manager_headers, make_printer):
        printer = make_printer()
        response = client.delete(f"{API}/printers/{printer.id}", headers=manager_headers)
        assert response.status_code == 200
        assert client.get(f"{API}/printers/{printer.id}", headers=manager_headers).status_code == 404

    def test_test_print(self, client, manager_headers, make_printer, sent):
        printer = make_printer()
        response = client.post(f"{API}/printers/{printer.id}/test", headers=manager_headers, params={"type": "print"})
        data = response.json()
        assert data["success"] is True
        assert data["printer"]["is_online"] is True
        assert data["printer"]["last_test_at"] is not None
        assert len(sent) == 1

    def test_bluetooth_test_print_fails(self, client, manager_headers, make_printer):
        printer = make_printer(
            name="Handheld", connection_type="Bluetooth", ip_address=None, bluetooth_address="00:11:22:33:44:55"
        )
        response = client.post(f"{API}/printers/{printer.id}/test", headers=manager_headers, params={"type": "print"})
        data = response.json()
        assert data["success"] is False
        assert data["printer"]["error_count"] == 1


class TestPrintJobs:
    def test_print_order_routes_by_department(self, client, staff_headers, make_printer, mixed_order, sent):
        make_printer("Kitchen Printer", "kitchen")
        make_printer("Bar Printer", "barista", ip_address="192.168.1.51")
        make_printer("Shisha Printer", "shisha", ip_address="192.168.1.52")

        response = client.post(f"{API}/print-jobs/order/{mixed_order['id']}", headers=staff_headers)
        assert response.status_code == 201
        jobs = response.json()["items"]
        assert {j["department"] for j in jobs} == {"kitchen", "barista"}
        assert all(j["status"] == "completed" for j in jobs)
        kitchen_job = next(j for j in jobs if j["department"] == "kitchen")
        assert [i["name"] for i in kitchen_job["ticket_data"]["items"]] == ["Margherita"]
        assert len(sent) == 2

    def test_general_printer_takes_everything(self, client, staff_headers, make_printer, mixed_order, sent):
        make_printer("Front Desk", "general")
        jobs = client.post(f"{API}/print-jobs/order/{mixed_order['id']}", headers=staff_headers).json()["items"]
        assert len(jobs) == 1
        assert len(jobs[0]["ticket_data"]["items"]) == 2

    def test_no_matching_printer(self, client, staff_headers, make_printer, mixed_order):
        make_printer("Shisha Printer", "shisha")
        response = client.post(f"{API}/print-jobs/order/{mixed_order['id']}", headers=staff_headers)
        assert response.status_code == 400

    def test_create_job(self, client, staff_headers, make_printer, mixed_order, sent):
        printer = make_printer()
        response = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id,
            "order_id": mixed_order["id"],
            "priority": "high",
            "print_settings": {"copies": 2},
        })
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "completed"
        assert data["attempts"] == 1
        assert len(sent) == 2

    def test_create_job_missing_printer(self, client, staff_headers, mixed_order):
        response = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": 999, "order_id": mixed_order["id"],
        })
        assert response.status_code == 404

    def test_create_job_department_without_items(self, client, staff_headers, make_printer, mixed_order):
        printer = make_printer("Shisha Printer", "shisha")
        response = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id, "order_id": mixed_order["id"],
        })
        assert response.status_code == 400

    def test_failure_marks_printer_offline(
        self, client, staff_headers, make_printer, mixed_order, broken_printer_link, db_session
    ):
        printer = make_printer()
        data = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id, "order_id": mixed_order["id"],
        }).json()
        assert data["status"] == "failed"
        assert data["can_retry"] is True
        assert "timed out" in data["error_message"]

        db_session.expire_all()
        printer = db_session.get(Printer, printer.id)
        assert printer.is_online is False
        assert printer.error_count == 1

    def test_retry_after_failure(self, client, staff_headers, make_printer, mixed_order, broken_printer_link,
                                 monkeypatch):
        printer = make_printer()
        job = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id, "order_id": mixed_order["id"],
        }).json()

        async def working_send(printer, payload):
            return None

        monkeypatch.setattr(print_service, "send_to_printer", working_send)
        response = client.put(f"{API}/print-jobs/{job['job_id']}", headers=staff_headers, params={"action": "retry"})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["attempts"] == 2

    def test_reprint_creates_new_job(self, client, staff_headers, make_printer, mixed_order, sent, db_session):
        printer = make_printer()
        job = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id, "order_id": mixed_order["id"],
        }).json()
        response = client.put(f"{API}/print-jobs/{job['job_id']}", headers=staff_headers, params={"action": "reprint"})
        data = response.json()
        assert data["job_type"] == "reprint"
        assert data["job_id"] != job["job_id"]
        assert db_session.query(PrintJob).count() == 2

    def test_cancel_completed_rejected(self, client, staff_headers, make_printer, mixed_order, sent):
        printer = make_printer()
        job = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id, "order_id": mixed_order["id"],
        }).json()
        response = client.put(f"{API}/print-jobs/{job['job_id']}", headers=staff_headers, params={"action": "cancel"})
        assert response.status_code == 400

    def test_bluetooth_job_fails_clearly(self, client, staff_headers, make_printer, mixed_order):
        printer = make_printer(
            name="Handheld", connection_type="Bluetooth", ip_address=None, bluetooth_address="00:11:22:33:44:55"
        )
        data = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id, "order_id": mixed_order["id"],
        }).json()
        assert data["status"] == "failed"
        assert "Bluetooth" in data["error_message"]

    def test_list_and_escpos(self, client, staff_headers, make_printer, mixed_order, sent):
        printer = make_printer()
        job = client.post(f"{API}/print-jobs", headers=staff_headers, json={
            "printer_id": printer.id, "order_id": mixed_order["id"],
        }).json()

        listing = client.get(f"{API}/print-jobs", headers=staff_headers, params={"status": "completed"}).json()
        assert listing["total"] == 1

        response = client.get(f"{API}/print-jobs/{job['job_id']}/escpos", headers=staff_headers)
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/octet-stream"
        assert response.content.startswith(ESC.INIT)

    def test_unknown_job(self, client, staff_headers):
        assert client.get(f"{API}/print-jobs/job_nope", headers=staff_headers).status_code == 404

    def test_unrenderable_ticket_fails_job(self, db_session, make_printer, mixed_order, sent):
        printer = make_printer()
        service = PrintJobService(db_session)
        job = service.create_job(printer, db_session.get(Order, mixed_order["id"]))
        job.ticket_data = {**job.ticket_data, "order_date": "last tuesday"}

        asyncio.run(service.process(job))
        assert job.status == "failed"
        assert job.attempts == 1
        assert job.error_message.startswith("Could not render ticket")
        assert printer.error_count == 0
        assert sent == []


class HangingProcess:
    """Stand-in for a CUPS command that never returns."""

    returncode = None

    def __init__(self):
        self.killed = False
        self.reaped = False

    async def communicate(self, data=None):
        await asyncio.sleep(60)

    def kill(self):
        self.killed = True

    async def wait(self):
        self.reaped = True
        return -9


class TestUsbTransport:
    @pytest.fixture
    def hanging_lp(self, monkeypatch):
        processes = []

        async def fake_exec(*args, **kwargs):
            processes.append(HangingProcess())
            return processes[-1]

        monkeypatch.setattr(print_service.asyncio, "create_subprocess_exec", fake_exec)
        monkeypatch.setattr(print_service.settings, "printer_timeout_seconds", 0.05)
        return processes

    @pytest.fixture
    def usb_printer(self):
        return Printer(name="Counter USB", department="general", connection_type="USB", usb_path="counter_raw")

    def test_print_timeout_kills_lp(self, hanging_lp, usb_printer):
        with pytest.raises(PrintJobError, match="timed out"):
            asyncio.run(print_service.send_to_printer(usb_printer, b"\x1b@"))
        assert hanging_lp[0].killed is True
        assert hanging_lp[0].reaped is True

    def test_connection_check_timeout_kills_lpstat(self, hanging_lp, usb_printer):
        result = asyncio.run(print_service.check_connection(usb_printer))
        assert result["success"] is False
        assert hanging_lp[0].killed is True
        assert hanging_lp[0].reaped is True
