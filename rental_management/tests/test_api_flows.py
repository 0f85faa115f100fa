import os
import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient


os.environ.setdefault("RENTAL_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import RentalMan as app_module
from ledger_fixtures import make_session_factory


class ApiFlowTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.factory = make_session_factory()

        def _override_db():
            db = self.factory()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[app_module.get_rental_db] = _override_db
        self.client = TestClient(app_module.app)
        self.headers = self._register("dealer@example.com")

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self.engine.dispose()

    def _register(self, email: str) -> dict:
        response = TestClient(app_module.app).post(
            "/api/auth/register",
            json={"name": "North Yard", "email": email, "password": "secret-pass", "businessName": "North Yard Rentals"},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return {"X-Session-Token": response.json()["sessionToken"]}

    def _create_customer(self, headers=None, name="Acme Builders") -> dict:
        response = self.client.post(
            "/api/customers",
            headers=headers or self.headers,
            json={"name": name, "contactNumber": "+1 555 0100", "businessType": "Construction"},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def _create_machine(self, headers=None) -> dict:
        response = self.client.post(
            "/api/machines",
            headers=headers or self.headers,
            json={"machineName": "CAT 320", "machineType": "Excavator", "model": "320 GC", "dailyRate": 450},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_health_endpoints(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})
        self.assertEqual(self.client.get("/api/healthz").status_code, 200)

    def test_login_logout_revokes_session_token(self):
        login = TestClient(app_module.app).post(
            "/api/auth/login",
            json={"email": "Dealer@Example.com", "password": "secret-pass"},
        )
        self.assertEqual(login.status_code, 200)
        headers = {"X-Session-Token": login.json()["sessionToken"]}

        me_before = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_before.status_code, 200)
        self.assertEqual(me_before.json()["user"]["email"], "dealer@example.com")

        logout = self.client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)

        me_after = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_after.status_code, 401)

    def test_login_rejects_wrong_password_and_duplicate_register(self):
        fresh = TestClient(app_module.app)
        bad = fresh.post("/api/auth/login", json={"email": "dealer@example.com", "password": "nope-nope"})
        self.assertEqual(bad.status_code, 401)

        duplicate = fresh.post(
            "/api/auth/register",
            json={"name": "Copy", "email": "dealer@example.com", "password": "secret-pass"},
        )
        self.assertEqual(duplicate.status_code, 409)

    def test_login_persists_with_cookie_session(self):
        client = TestClient(app_module.app)
        login = client.post("/api/auth/login", json={"email": "dealer@example.com", "password": "secret-pass"})
        self.assertEqual(login.status_code, 200)
        self.assertIn("rental_management_session=", login.headers.get("set-cookie", ""))

        customers = client.get("/api/customers")
        self.assertEqual(customers.status_code, 200)

    def test_requests_without_session_are_rejected(self):
        client = TestClient(app_module.app)
        self.assertEqual(client.get("/api/customers").status_code, 401)
        self.assertEqual(client.get("/api/rentals", headers={"X-Session-Token": "forged.token"}).status_code, 401)

    def test_rental_round_trip(self):
        customer = self._create_customer()
        machine = self._create_machine()
        other = self._create_customer(name="Bayside Landscaping")

        opened = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": machine["machineID"], "rentalAmount": 500, "securityDeposit": 100},
        )
        self.assertEqual(opened.status_code, 201, opened.text)
        rental = opened.json()
        self.assertEqual(rental["status"], "active")
        self.assertEqual(rental["equipment"]["status"], "rented")
        self.assertEqual(len(rental["payments"]), 1)
        self.assertEqual(rental["payments"][0]["outstandingDue"], 600)

        clash = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": other["customerID"], "machineID": machine["machineID"], "rentalAmount": 300},
        )
        self.assertEqual(clash.status_code, 409)
        self.assertIn("not available", clash.json()["detail"])

        machine_after = self.client.get(f"/api/machines/{machine['machineID']}", headers=self.headers).json()
        self.assertEqual(machine_after["status"], "rented")
        self.assertEqual(machine_after["currentRentalID"], rental["rentalID"])
        self.assertEqual(machine_after["currentRental"]["rentalID"], rental["rentalID"])

        paid = self.client.post(
            "/api/payments",
            headers=self.headers,
            json={
                "customerID": customer["customerID"],
                "rentalID": rental["rentalID"],
                "amountPaid": 600,
                "outstandingDue": 0,
                "paymentMethod": "cash",
            },
        )
        self.assertEqual(paid.status_code, 201, paid.text)
        customer_after = self.client.get(f"/api/customers/{customer['customerID']}", headers=self.headers).json()
        self.assertEqual(customer_after["totalOutstandingDue"], 0)
        self.assertEqual(customer_after["totalRentals"], 1)
        self.assertEqual(len(customer_after["payments"]), 2)

        returned = self.client.post(
            f"/api/rentals/{rental['rentalID']}/return",
            headers=self.headers,
            json={"returnCondition": "good"},
        )
        self.assertEqual(returned.status_code, 200, returned.text)
        self.assertEqual(returned.json()["status"], "completed")
        machine_final = self.client.get(f"/api/machines/{machine['machineID']}", headers=self.headers).json()
        self.assertEqual(machine_final["status"], "available")
        self.assertIsNone(machine_final["currentRentalID"])

        again = self.client.put(
            f"/api/rentals/{rental['rentalID']}",
            headers=self.headers,
            json={"returnCondition": "good"},
        )
        self.assertEqual(again.status_code, 409)

    def test_damaged_return_raises_alert(self):
        customer = self._create_customer()
        machine = self._create_machine()
        rental = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": machine["machineID"], "rentalAmount": 100},
        ).json()

        self.client.put(f"/api/rentals/{rental['rentalID']}", headers=self.headers, json={"returnCondition": "damaged"})

        alerts = self.client.get("/api/alerts", headers=self.headers).json()
        self.assertEqual([alert["type"] for alert in alerts], ["Equipment Damage"])
        resolved = self.client.post(f"/api/alerts/{alerts[0]['alertID']}/resolve", headers=self.headers)
        self.assertEqual(resolved.json()["status"], "Resolved")
        self.assertEqual(self.client.get("/api/alerts", headers=self.headers).json(), [])

    def test_cancel_rental_voids_and_frees_vehicle(self):
        customer = self._create_customer()
        vehicle = self.client.post(
            "/api/vehicles",
            headers=self.headers,
            json={"type": "Truck", "model": "F-750", "manufacturer": "Ford"},
        ).json()
        self.assertTrue(vehicle["vehicleNumber"].startswith("TRU-"))

        rental = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "vehicleID": vehicle["vehicleID"], "rentalAmount": 250},
        ).json()

        cancelled = self.client.delete(f"/api/rentals/{rental['rentalID']}", headers=self.headers)
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.json()["rental"]["status"], "cancelled")
        vehicle_after = self.client.get(f"/api/vehicles/{vehicle['vehicleID']}", headers=self.headers).json()
        self.assertEqual(vehicle_after["status"], "available")

        self.assertEqual(self.client.delete(f"/api/rentals/{rental['rentalID']}", headers=self.headers).status_code, 409)
        listed = self.client.get("/api/rentals", headers=self.headers, params={"status": "cancelled"}).json()
        self.assertEqual([item["rentalID"] for item in listed], [rental["rentalID"]])

    def test_payment_edits_recompute_customer_total(self):
        customer = self._create_customer()
        machine = self._create_machine()
        rental = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": machine["machineID"], "rentalAmount": 300},
        ).json()
        payment = self.client.post(
            "/api/payments",
            headers=self.headers,
            json={"customerID": customer["customerID"], "rentalID": rental["rentalID"], "amountPaid": 100, "outstandingDue": 200},
        ).json()
        self.assertEqual(payment["paymentMethod"], "cash")
        self.assertEqual(payment["rental"]["rentalNumber"], rental["rentalNumber"])

        edited = self.client.put(f"/api/payments/{payment['paymentID']}", headers=self.headers, json={"outstandingDue": 50})
        self.assertEqual(edited.status_code, 200)
        customer_after = self.client.get(f"/api/customers/{customer['customerID']}", headers=self.headers).json()
        self.assertEqual(customer_after["totalOutstandingDue"], 50)

        negative = self.client.post(
            "/api/payments",
            headers=self.headers,
            json={"customerID": customer["customerID"], "rentalID": rental["rentalID"], "amountPaid": -1, "outstandingDue": 0},
        )
        self.assertEqual(negative.status_code, 422)

        deleted = self.client.delete(f"/api/payments/{payment['paymentID']}", headers=self.headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json()["totalOutstandingDue"], 300)
        self.assertEqual(self.client.get(f"/api/payments/{payment['paymentID']}", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.post("/api/alerts/generate", headers=self.headers).json(), {"overdueRentals": 0})

    def test_rental_payload_needs_exactly_one_equipment(self):
        customer = self._create_customer()
        response = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": 1, "vehicleID": 1, "rentalAmount": 10},
        )
        self.assertEqual(response.status_code, 422)

    def test_admin_status_edits_cannot_enter_or_leave_rented(self):
        customer = self._create_customer()
        machine = self._create_machine()

        to_rented = self.client.put(f"/api/machines/{machine['machineID']}", headers=self.headers, json={"status": "rented"})
        self.assertEqual(to_rented.status_code, 409)

        maintenance = self.client.put(
            f"/api/machines/{machine['machineID']}", headers=self.headers, json={"status": "under_maintenance"}
        )
        self.assertEqual(maintenance.status_code, 200)
        self.assertEqual(maintenance.json()["status"], "under_maintenance")
        self.client.put(f"/api/machines/{machine['machineID']}", headers=self.headers, json={"status": "available"})

        self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": machine["machineID"], "rentalAmount": 100},
        )
        leave_rented = self.client.put(
            f"/api/machines/{machine['machineID']}", headers=self.headers, json={"status": "under_maintenance"}
        )
        self.assertEqual(leave_rented.status_code, 409)
        self.assertEqual(self.client.delete(f"/api/machines/{machine['machineID']}", headers=self.headers).status_code, 409)
        self.assertEqual(self.client.delete(f"/api/customers/{customer['customerID']}", headers=self.headers).status_code, 409)

    def test_dealers_cannot_see_each_other(self):
        customer = self._create_customer()
        machine = self._create_machine()
        other_headers = self._register("other@example.com")

        self.assertEqual(self.client.get(f"/api/customers/{customer['customerID']}", headers=other_headers).status_code, 404)
        self.assertEqual(self.client.get(f"/api/machines/{machine['machineID']}", headers=other_headers).status_code, 404)
        self.assertEqual(self.client.get("/api/customers", headers=other_headers).json(), [])

        other_customer = self._create_customer(headers=other_headers)
        crossed = self.client.post(
            "/api/rentals",
            headers=other_headers,
            json={"customerID": other_customer["customerID"], "machineID": machine["machineID"], "rentalAmount": 10},
        )
        self.assertEqual(crossed.status_code, 404)

    def test_dashboard_and_audit_trail(self):
        customer = self._create_customer()
        machine = self._create_machine()
        self._create_machine()
        self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": machine["machineID"], "rentalAmount": 400},
        )

        stats = self.client.get("/api/dashboard/stats", headers=self.headers).json()
        self.assertEqual(stats["machinesByStatus"], {"available": 1, "rented": 1})
        self.assertEqual(stats["activeRentals"], 1)
        self.assertEqual(stats["customers"], 1)
        self.assertEqual(stats["totalOutstanding"], 400)

        audit = self.client.get("/api/audit", headers=self.headers, params={"entityType": "Rental"}).json()
        self.assertEqual([entry["action"] for entry in audit], ["OpenRental"])

    def _open_rental(self, customer: dict, machine: dict, amount=100) -> dict:
        response = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": machine["machineID"], "rentalAmount": amount},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_deleting_the_only_payment_restores_rental_debt(self):
        customer = self._create_customer()
        machine = self._create_machine()
        rental = self.client.post(
            "/api/rentals",
            headers=self.headers,
            json={"customerID": customer["customerID"], "machineID": machine["machineID"], "rentalAmount": 500, "securityDeposit": 100},
        ).json()
        payment = self.client.post(
            "/api/payments",
            headers=self.headers,
            json={"customerID": customer["customerID"], "rentalID": rental["rentalID"], "amountPaid": 600, "outstandingDue": 0},
        ).json()

        deleted = self.client.delete(f"/api/payments/{payment['paymentID']}", headers=self.headers)

        self.assertEqual(deleted.json()["totalOutstandingDue"], 600)
        customer_after = self.client.get(f"/api/customers/{customer['customerID']}", headers=self.headers).json()
        self.assertEqual(customer_after["totalOutstandingDue"], 600)

    def test_choice_fields_are_validated(self):
        bad_customer = self.client.post(
            "/api/customers",
            headers=self.headers,
            json={"name": "Odd Co", "contactNumber": "+1 555 0100", "businessType": "Retail"},
        )
        self.assertEqual(bad_customer.status_code, 400)
        self.assertIn("businessType", bad_customer.json()["detail"])

        bad_machine = self.client.post(
            "/api/machines",
            headers=self.headers,
            json={"machineName": "Rocket", "machineType": "Spaceship", "model": "X1"},
        )
        self.assertEqual(bad_machine.status_code, 400)

        bad_vehicle = self.client.post(
            "/api/vehicles",
            headers=self.headers,
            json={"type": "Truck", "model": "F-750", "condition": "shiny"},
        )
        self.assertEqual(bad_vehicle.status_code, 400)

        customer = self._create_customer()
        renamed = self.client.put(
            f"/api/customers/{customer['customerID']}", headers=self.headers, json={"businessType": "Mining"}
        )
        self.assertEqual(renamed.status_code, 200)
        self.assertEqual(renamed.json()["businessType"], "Mining")
        rejected = self.client.put(
            f"/api/customers/{customer['customerID']}", headers=self.headers, json={"businessType": "Retail"}
        )
        self.assertEqual(rejected.status_code, 400)
        self.assertEqual(self.client.get("/api/rentals", headers=self.headers, params={"status": "lost"}).status_code, 400)

    def test_expected_return_date_is_not_editable_on_equipment(self):
        machine = self._create_machine()
        response = self.client.put(
            f"/api/machines/{machine['machineID']}",
            headers=self.headers,
            json={"model": "320 Next Gen", "expectedReturnDate": "2030-01-01"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["model"], "320 Next Gen")
        self.assertIsNone(response.json()["expectedReturnDate"])

    def test_alert_acknowledge_count_and_dismiss(self):
        customer = self._create_customer()
        machine = self._create_machine()
        rental = self._open_rental(customer, machine)
        self.client.put(f"/api/rentals/{rental['rentalID']}", headers=self.headers, json={"returnCondition": "broken"})

        count = self.client.get("/api/alerts/count", headers=self.headers).json()
        self.assertEqual(count["totalActive"], 1)
        self.assertEqual(count["breakdown"], [{"status": "Active", "priority": "High", "count": 1}])

        alert_id = self.client.get("/api/alerts", headers=self.headers, params={"priority": "High"}).json()[0]["alertID"]
        acknowledged = self.client.put(
            f"/api/alerts/{alert_id}/acknowledge", headers=self.headers, json={"notes": "Sent to workshop"}
        )
        self.assertEqual(acknowledged.status_code, 200, acknowledged.text)
        self.assertEqual(acknowledged.json()["status"], "Acknowledged")
        self.assertEqual(acknowledged.json()["actionNotes"], "Sent to workshop")
        self.assertIsNotNone(acknowledged.json()["acknowledgedAt"])
        self.assertEqual(self.client.put(f"/api/alerts/{alert_id}/acknowledge", headers=self.headers).status_code, 409)
        self.assertEqual(self.client.get("/api/alerts/count", headers=self.headers).json()["totalActive"], 0)

        resolved = self.client.put(f"/api/alerts/{alert_id}/resolve", headers=self.headers, json={"notes": "Fixed"})
        self.assertEqual(resolved.json()["status"], "Resolved")

        dismissed = self.client.delete(f"/api/alerts/{alert_id}", headers=self.headers)
        self.assertEqual(dismissed.status_code, 200)
        self.assertEqual(self.client.delete(f"/api/alerts/{alert_id}", headers=self.headers).status_code, 409)
        listed = self.client.get("/api/alerts", headers=self.headers, params={"status": "Dismissed"}).json()
        self.assertEqual([item["alertID"] for item in listed], [alert_id])
        self.assertEqual(self.client.delete("/api/alerts/9999", headers=self.headers).status_code, 404)

    def test_search_and_suggestions(self):
        customer = self._create_customer()
        self._create_customer(name="Bayside Landscaping")
        machine = self._create_machine()
        rental = self._open_rental(customer, machine)

        found = self.client.get("/api/search", headers=self.headers, params={"query": "acme"})
        self.assertEqual(found.status_code, 200, found.text)
        body = found.json()
        self.assertEqual([item["customerID"] for item in body["data"]["customers"]], [customer["customerID"]])
        self.assertEqual(body["totalResults"], 1)

        by_number = self.client.get(
            "/api/search", headers=self.headers, params={"query": rental["rentalNumber"], "type": "rentals"}
        ).json()
        self.assertEqual([item["rentalID"] for item in by_number["data"]["rentals"]], [rental["rentalID"]])
        self.assertEqual(by_number["data"]["customers"], [])

        self.assertEqual(self.client.get("/api/search", headers=self.headers, params={"query": "a"}).status_code, 400)
        self.assertEqual(
            self.client.get("/api/search", headers=self.headers, params={"query": "acme", "type": "planets"}).status_code,
            400,
        )

        suggestions = self.client.get("/api/search/suggestions", headers=self.headers, params={"query": "CAT"}).json()
        self.assertIn(
            {"type": "machine", "id": machine["machineID"], "text": "CAT 320 - Excavator 320 GC", "category": "Machines"},
            suggestions,
        )
        self.assertEqual(self.client.get("/api/search/suggestions", headers=self.headers).json(), [])

        other_headers = self._register("other@example.com")
        hidden = self.client.get("/api/search", headers=other_headers, params={"query": "acme"}).json()
        self.assertEqual(hidden["totalResults"], 0)

    def test_settings_profile_and_password(self):
        profile = self.client.get("/api/settings/profile", headers=self.headers).json()
        self.assertEqual(profile["email"], "dealer@example.com")

        updated = self.client.put(
            "/api/settings/profile",
            headers=self.headers,
            json={"name": "North Yard Group", "businessName": "North Yard Group Ltd"},
        )
        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(updated.json()["name"], "North Yard Group")

        self._register("other@example.com")
        taken = self.client.put("/api/settings/profile", headers=self.headers, json={"email": "Other@Example.com"})
        self.assertEqual(taken.status_code, 409)

        wrong = self.client.put(
            "/api/settings/password",
            headers=self.headers,
            json={"currentPassword": "not-it", "newPassword": "fresh-pass", "confirmPassword": "fresh-pass"},
        )
        self.assertEqual(wrong.status_code, 400)
        mismatch = self.client.put(
            "/api/settings/password",
            headers=self.headers,
            json={"currentPassword": "secret-pass", "newPassword": "fresh-pass", "confirmPassword": "other-pass"},
        )
        self.assertEqual(mismatch.status_code, 422)

        changed = self.client.put(
            "/api/settings/password",
            headers=self.headers,
            json={"currentPassword": "secret-pass", "newPassword": "fresh-pass", "confirmPassword": "fresh-pass"},
        )
        self.assertEqual(changed.status_code, 200, changed.text)
        fresh = TestClient(app_module.app)
        self.assertEqual(
            fresh.post("/api/auth/login", json={"email": "dealer@example.com", "password": "secret-pass"}).status_code, 401
        )
        self.assertEqual(
            fresh.post("/api/auth/login", json={"email": "dealer@example.com", "password": "fresh-pass"}).status_code, 200
        )

    def test_recent_activity_and_revenue_chart(self):
        customer = self._create_customer()
        machine = self._create_machine()
        rental = self._open_rental(customer, machine, amount=300)
        self.client.post(
            "/api/payments",
            headers=self.headers,
            json={"customerID": customer["customerID"], "rentalID": rental["rentalID"], "amountPaid": 150, "outstandingDue": 150},
        )

        activity = self.client.get("/api/dashboard/recent-activity", headers=self.headers, params={"limit": 5}).json()
        self.assertEqual([item["rentalID"] for item in activity["recentRentals"]], [rental["rentalID"]])
        self.assertEqual(activity["recentRentals"][0]["customerName"], "Acme Builders")
        self.assertEqual(activity["recentRentals"][0]["equipment"], "CAT 320")
        self.assertEqual(len(activity["recentPayments"]), 2)

        chart = self.client.get("/api/dashboard/revenue-chart", headers=self.headers).json()
        self.assertEqual(len(chart), 1)
        self.assertEqual(chart[0]["totalRevenue"], 150)
        self.assertEqual(chart[0]["count"], 2)
        self.assertEqual(len(chart[0]["period"]), len("2026-01-01"))

        yearly = self.client.get("/api/dashboard/revenue-chart", headers=self.headers, params={"period": "year"}).json()
        self.assertEqual(len(yearly[0]["period"]), len("2026-01"))
        self.assertEqual(
            self.client.get("/api/dashboard/revenue-chart", headers=self.headers, params={"period": "decade"}).status_code,
            400,
        )


if __name__ == "__main__":
    unittest.main()
