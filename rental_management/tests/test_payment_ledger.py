import os
import sys
import unittest
from decimal import Decimal
from pathlib import Path


os.environ.setdefault("RENTAL_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from ledger_fixtures import count_rows, ledger_balance, make_session_factory, seed_customer, seed_dealer, seed_machine
from models.rental_models import AuditLog, PaymentRecord
from services.audit_service import list_audit_entries
from services.errors import NotFoundError, RentalValidationError
from services.payment_service import (
    delete_payment,
    list_payments,
    recalc_customer_outstanding,
    record_payment,
    rental_balance,
    update_payment,
)
from services.rental_service import open_rental


class PaymentLedgerTests(unittest.TestCase):
    def setUp(self):
        self.engine, factory = make_session_factory()
        self.db = factory()
        self.dealer_id = seed_dealer(self.db).DealerID
        self.customer = seed_customer(self.db, self.dealer_id)
        self.machine = seed_machine(self.db, self.dealer_id)
        self.rental = open_rental(
            self.db, self.dealer_id, self.customer.CustomerID, "machine", self.machine.MachineID, 500, 100
        )

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _assert_cached_total_matches_ledger(self):
        self.db.refresh(self.customer)
        self.assertEqual(
            Decimal(str(self.customer.TotalOutstandingDue)),
            ledger_balance(self.db, self.customer.CustomerID),
        )

    def test_partial_payment_leaves_opening_entry_untouched(self):
        payment = record_payment(
            self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 200, 400, "bank_transfer",
            transaction_reference="TX-1",
        )

        entries = {row.PaymentID: row for row in list_payments(self.db, self.dealer_id, rental_id=self.rental.RentalID)}
        for row in entries.values():
            self.db.refresh(row)
        self.assertEqual(len(entries), 2)
        self.assertEqual(entries[payment.PaymentID].OutstandingDue, Decimal("400"))
        opening = [row for key, row in entries.items() if key != payment.PaymentID][0]
        self.assertEqual(opening.OutstandingDue, Decimal("600"))
        self.assertEqual(payment.PaymentMethod, "bank_transfer")
        self.assertEqual(payment.TransactionReference, "TX-1")
        self._assert_cached_total_matches_ledger()
        self.assertEqual(self.customer.TotalOutstandingDue, Decimal("400"))

    def test_balances_of_separate_rentals_add_up(self):
        second_machine = seed_machine(self.db, self.dealer_id, name="JCB 3CX")
        second = open_rental(self.db, self.dealer_id, self.customer.CustomerID, "machine", second_machine.MachineID, 300)
        self.assertEqual(self.customer.TotalOutstandingDue, Decimal("900"))

        record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 600, 0)

        self._assert_cached_total_matches_ledger()
        self.assertEqual(self.customer.TotalOutstandingDue, Decimal("300"))
        self.assertEqual(self.customer.TotalRentals, 2)
        self.assertEqual(second.Status, "active")

    def test_update_and_delete_keep_cached_total_in_sync(self):
        payment = record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 100, 500, "check")

        updated = update_payment(self.db, self.dealer_id, payment.PaymentID, {"outstandingDue": 150, "notes": "Adjusted"})
        self.assertEqual(updated.OutstandingDue, Decimal("150"))
        self.assertEqual(updated.Notes, "Adjusted")
        self._assert_cached_total_matches_ledger()
        self.assertEqual(self.customer.TotalOutstandingDue, Decimal("150"))

        total = delete_payment(self.db, self.dealer_id, payment.PaymentID)
        self.assertEqual(total, Decimal("600"))
        self.assertEqual(count_rows(self.db, PaymentRecord), 1)
        self._assert_cached_total_matches_ledger()

    def test_deleting_the_only_payment_restores_the_opening_debt(self):
        payment = record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 600, 0)
        self.assertEqual(self.customer.TotalOutstandingDue, Decimal("0"))

        total = delete_payment(self.db, self.dealer_id, payment.PaymentID)

        self.assertEqual(total, Decimal("600"))
        self.assertEqual(rental_balance(self.db, self.dealer_id, self.rental.RentalID), Decimal("600"))
        opening = list_payments(self.db, self.dealer_id, rental_id=self.rental.RentalID)
        self.assertEqual(len(opening), 1)
        self.db.refresh(opening[0])
        self.assertEqual(opening[0].OutstandingDue, Decimal("600"))
        self._assert_cached_total_matches_ledger()
        self.assertEqual(self.customer.TotalOutstandingDue, Decimal("600"))

    def test_deleting_newest_payment_falls_back_to_previous_balance(self):
        record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 200, 400)
        latest = record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 400, 0)
        self.assertEqual(rental_balance(self.db, self.dealer_id, self.rental.RentalID), Decimal("0"))

        total = delete_payment(self.db, self.dealer_id, latest.PaymentID)

        self.assertEqual(total, Decimal("400"))
        self.assertEqual(count_rows(self.db, PaymentRecord), 2)
        self._assert_cached_total_matches_ledger()

    def test_recalc_repairs_a_stale_cache(self):
        self.customer.TotalOutstandingDue = Decimal("999")
        self.db.commit()

        total = recalc_customer_outstanding(self.db, self.dealer_id, self.customer.CustomerID)
        self.db.commit()

        self.assertEqual(total, Decimal("600"))
        self._assert_cached_total_matches_ledger()

    def test_payment_rejects_bad_input(self):
        with self.assertRaises(RentalValidationError):
            record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, -1, 0)
        with self.assertRaises(RentalValidationError):
            record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, "abc", 0)
        with self.assertRaises(RentalValidationError):
            record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 10, 0, "barter")
        self.assertEqual(count_rows(self.db, PaymentRecord), 1)

    def test_payment_must_match_rental_customer(self):
        other = seed_customer(self.db, self.dealer_id, name="Bayside Landscaping")
        with self.assertRaises(RentalValidationError):
            record_payment(self.db, self.dealer_id, other.CustomerID, self.rental.RentalID, 10, 0)
        with self.assertRaises(NotFoundError):
            record_payment(self.db, self.dealer_id, self.customer.CustomerID, 9999, 10, 0)

    def test_payments_are_scoped_to_dealer(self):
        other_dealer = seed_dealer(self.db, email="other@example.com", name="South Yard")
        payment_id = self.rental.Payments[0].PaymentID

        with self.assertRaises(NotFoundError):
            record_payment(self.db, other_dealer.DealerID, self.customer.CustomerID, self.rental.RentalID, 10, 0)
        with self.assertRaises(NotFoundError):
            update_payment(self.db, other_dealer.DealerID, payment_id, {"amountPaid": 1})
        with self.assertRaises(NotFoundError):
            delete_payment(self.db, other_dealer.DealerID, payment_id)
        self.assertEqual(list_payments(self.db, other_dealer.DealerID), [])

    def test_ledger_writes_are_audited(self):
        record_payment(self.db, self.dealer_id, self.customer.CustomerID, self.rental.RentalID, 50, 550)

        actions = [entry["action"] for entry in list_audit_entries(self.db, self.dealer_id)]
        self.assertEqual(actions[:2], ["RecordPayment", "OpenRental"])
        self.assertEqual(len(list_audit_entries(self.db, self.dealer_id, entity_type="Payment")), 1)
        self.assertEqual(count_rows(self.db, AuditLog), 2)


if __name__ == "__main__":
    unittest.main()
