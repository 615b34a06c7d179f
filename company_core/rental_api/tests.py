import datetime
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from django.utils import timezone

from rentals.activity import current_actor
from rentals.exceptions import AlreadyInvoiced, NotFound, Overpayment, PromotionNotFound, VehicleUnavailable
from rentals.models import Invoice, RentalOrder
from rentals.testing import make_customer, make_invoice, make_promotion, make_vehicle, rental_window

from .views import status_for_error


class RentalApiTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="staff", password="p")
        self.client.force_login(self.user)
        self.customer = make_customer()
        self.vehicle = make_vehicle()
        self.start, self.end = rental_window(days=3)

    def _post(self, url, data=None):
        return self.client.post(url, data or {}, content_type="application/json")

    def _create_order(self, **extra):
        payload = {
            "customer_id": self.customer.pk,
            "vehicle_id": self.vehicle.pk,
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
        }
        payload.update(extra)
        return self._post("/api/rental-orders/", payload)

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get("/api/rental-orders/")
        self.assertIn(response.status_code, (401, 403))

    def test_create_and_fetch_order(self):
        make_promotion(max_discount="100000")

        response = self._create_order(promotion_code="SPRING10")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "Draft")
        self.assertEqual(body["total_days"], 3)
        self.assertEqual(body["sub_total"], "1500000.00")
        self.assertEqual(body["discount_amount"], "100000.00")
        self.assertEqual(body["total_amount"], "1400000.00")
        self.assertTrue(body["promotion_message"])

        detail = self.client.get(f"/api/rental-orders/{body['id']}/")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["order_number"], body["order_number"])

    def test_create_rejects_reversed_dates(self):
        response = self._create_order(end_date=self.start.isoformat(), start_date=self.end.isoformat())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "validation_failed")
        self.assertFalse(RentalOrder.objects.exists())

    def test_lifecycle_actions_and_history(self):
        order_id = self._create_order().json()["id"]

        self.assertEqual(self._post(f"/api/rental-orders/{order_id}/confirm/").json()["status"], "Confirmed")
        self.assertEqual(self._post(f"/api/rental-orders/{order_id}/start/").json()["status"], "InProgress")
        completed = self._post(f"/api/rental-orders/{order_id}/complete/", {"return_location": "District 3"})
        self.assertEqual(completed.json()["status"], "Completed")

        history = self.client.get(f"/api/rental-orders/{order_id}/history/").json()
        self.assertEqual([row["new_status"] for row in history], ["Draft", "Confirmed", "InProgress", "Completed"])
        self.assertEqual(history[1]["changed_by"], "staff")

    def test_second_active_order_for_vehicle_is_conflict(self):
        self.assertEqual(self._create_order().status_code, 201)

        response = self._create_order()

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "vehicle_unavailable")
        self.assertEqual(RentalOrder.objects.count(), 1)

    def test_illegal_transition_maps_to_conflict(self):
        order_id = self._create_order().json()["id"]

        response = self._post(f"/api/rental-orders/{order_id}/complete/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "invalid_transition")
        self.assertIn("Draft", response.json()["detail"])

    def test_missing_order_maps_to_not_found(self):
        response = self._post("/api/rental-orders/999999/confirm/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "not_found")

    def test_update_and_delete_draft(self):
        order_id = self._create_order().json()["id"]

        response = self.client.patch(
            f"/api/rental-orders/{order_id}/",
            {"notes": "Child seat", "deposit_amount": "200000.00"},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["notes"], "Child seat")
        self.assertEqual(response.json()["deposit_amount"], "200000.00")

        self.assertEqual(self.client.delete(f"/api/rental-orders/{order_id}/").status_code, 204)
        self.assertEqual(self.client.get(f"/api/rental-orders/{order_id}/").status_code, 404)

    def test_quote_by_vehicle_and_by_rate(self):
        make_promotion(max_discount="100000")

        by_vehicle = self._post(
            "/api/rental-orders/quote/",
            {
                "vehicle_id": self.vehicle.pk,
                "start_date": self.start.isoformat(),
                "end_date": self.end.isoformat(),
                "promotion_code": "SPRING10",
            },
        )
        self.assertEqual(by_vehicle.status_code, 200)
        self.assertEqual(by_vehicle.json()["total_amount"], "1400000.00")
        self.assertTrue(by_vehicle.json()["promotion_valid"])

        by_rate = self._post(
            "/api/rental-orders/quote/",
            {"daily_rate": "1000.00", "start_date": self.start.isoformat(), "end_date": self.end.isoformat()},
        )
        self.assertEqual(by_rate.json()["sub_total"], "3000.00")
        self.assertEqual(RentalOrder.objects.count(), 0)

    def test_invoice_and_payment_flow(self):
        order_id = self._create_order().json()["id"]
        for step in ("confirm", "start", "complete"):
            self._post(f"/api/rental-orders/{order_id}/{step}/")

        created = self._post(
            "/api/invoices/",
            {
                "rental_order_id": order_id,
                "invoice_date": "2026-03-05",
                "due_date": (timezone.localdate() + datetime.timedelta(days=30)).isoformat(),
                "tax_rate": "0",
            },
        )
        self.assertEqual(created.status_code, 201)
        invoice = created.json()
        self.assertEqual(invoice["total_amount"], "1500000.00")
        self.assertEqual(len(invoice["details"]), 1)

        again = self._post("/api/invoices/", {"rental_order_id": order_id})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"], "already_invoiced")

        paid = self._post(
            "/api/payments/",
            {"invoice_id": invoice["id"], "amount": "500000.00", "payment_method": "Cash",
             "expected_version": invoice["version"]},
        )
        self.assertEqual(paid.status_code, 201)

        stale = self._post(
            "/api/payments/",
            {"invoice_id": invoice["id"], "amount": "1.00", "payment_method": "Cash",
             "expected_version": invoice["version"]},
        )
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(stale.json()["error"], "concurrency_conflict")

        too_much = self._post(
            "/api/payments/",
            {"invoice_id": invoice["id"], "amount": "1000000.01", "payment_method": "Cash"},
        )
        self.assertEqual(too_much.status_code, 409)
        self.assertEqual(too_much.json()["error"], "overpayment")

        refreshed = self.client.get(f"/api/invoices/{invoice['id']}/").json()
        self.assertEqual(refreshed["status"], "Partial")
        self.assertEqual(refreshed["remaining_amount"], "1000000.00")

        payments = self.client.get(f"/api/invoices/{invoice['id']}/payments/").json()
        self.assertEqual(len(payments), 1)

    def test_non_positive_payment_is_bad_request(self):
        invoice = make_invoice(total="100.00")

        response = self._post(
            "/api/payments/",
            {"invoice_id": invoice.pk, "amount": "0", "payment_method": "Cash"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "invalid_amount")

    def test_void_payment_endpoint(self):
        invoice = make_invoice(total="100.00")
        payment = self._post(
            "/api/payments/",
            {"invoice_id": invoice.pk, "amount": "40.00", "payment_method": "Cash"},
        ).json()

        response = self._post(f"/api/payments/{payment['id']}/void/", {"reason": "Entered twice"})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_voided"])
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))

    def test_refresh_overdue_endpoint(self):
        invoice = make_invoice(total="100.00", due_date=datetime.date(2026, 3, 8))

        response = self._post("/api/invoices/refresh_overdue/", {"as_of": "2026-04-01"})

        self.assertEqual(response.json(), {"updated": 1})
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_OVERDUE)

    def test_actor_context_is_cleared_after_request(self):
        self.client.get("/api/rental-orders/")
        self.assertIsNone(current_actor())


class ErrorStatusMappingTests(TestCase):
    def test_status_codes(self):
        self.assertEqual(status_for_error(NotFound()), 404)
        self.assertEqual(status_for_error(PromotionNotFound()), 400)
        self.assertEqual(status_for_error(VehicleUnavailable()), 409)
        self.assertEqual(status_for_error(AlreadyInvoiced()), 409)
        self.assertEqual(status_for_error(Overpayment()), 409)
