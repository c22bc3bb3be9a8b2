# Overview: Pytest coverage for credit transaction lifecycle; creation, confirmation, cancellation and queries.

"""
Credit transaction lifecycle tests.

Amounts are integer cents: €1000 == 100_000.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import text

from creditdesk.errors import (
    ConflictError,
    EmptyTransactionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from creditdesk.models import LedgerEvent, Product
from creditdesk.services import credit_transaction_service as svc


A2 = [{"product_code": "A", "quantity": 2}]


class TestLifecycleScenarios:
    def test_pickup_then_confirm_moves_balance(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer(limit_cents=100_000, balance_cents=0)
        make_product(code="A", price_cents=10_000)

        txn = make_transaction(customer, A2)
        assert txn.status == "PENDING"
        assert txn.total_amount_cents == 20_000
        assert txn.total_items == 2
        assert customer.current_balance_cents == 0

        confirmed = confirm(txn.id)
        assert confirmed.status == "CONFIRMED"
        assert confirmed.confirmed_by == "Petras"
        assert confirmed.confirmed_at is not None
        assert customer.current_balance_cents == 20_000

    def test_return_lowers_balance(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer(limit_cents=100_000, balance_cents=0)
        make_product(code="A", price_cents=10_000)
        make_product(code="B", price_cents=5_000)
        confirm(make_transaction(customer, A2).id)

        ret = make_transaction(customer, [{"product_code": "B", "quantity": 1}], transaction_type="RETURN")
        assert ret.total_amount_cents == 5_000
        assert customer.current_balance_cents == 20_000

        confirm(ret.id)
        assert customer.current_balance_cents == 15_000

    def test_over_limit_warns_but_creates(self, db_session, make_customer, make_product):
        make_customer(limit_cents=10_000, balance_cents=9_000)
        make_product(code="A", price_cents=5_000)

        txn, credit = svc.create_transaction(
            transaction_type="PICKUP",
            customer_code="C001",
            lines=[{"product_code": "A", "quantity": 1}],
            performed_by="Jonas",
            performed_by_role="EMPLOYEE",
        )
        assert txn.status == "PENDING"
        assert credit["projected_balance_cents"] == 14_000
        assert credit["is_over_limit"] is True

    def test_cancelled_cannot_be_confirmed(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)

        cancelled = svc.cancel_transaction(txn.id, reason="klaida", cancelled_by="Jonas")
        assert cancelled.status == "CANCELLED"
        assert cancelled.cancellation_reason == "klaida"
        assert cancelled.cancelled_at is not None

        with pytest.raises(InvalidStateError) as exc:
            confirm(txn.id)
        assert exc.value.current_state == "CANCELLED"
        assert customer.current_balance_cents == 0

    def test_double_confirm_applies_once(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)
        confirm(txn.id)

        with pytest.raises(InvalidStateError):
            confirm(txn.id)
        assert customer.current_balance_cents == 20_000
        applied = db_session.query(LedgerEvent).filter_by(event_type="BALANCE_APPLIED").count()
        assert applied == 1

    def test_cancel_confirmed_fails(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)
        confirm(txn.id)

        with pytest.raises(InvalidStateError):
            svc.cancel_transaction(txn.id, reason="too late")
        assert svc.get_transaction(txn.id).status == "CONFIRMED"


class TestCreationValidation:
    def test_empty_lines(self, db_session, make_customer):
        make_customer()
        with pytest.raises(EmptyTransactionError):
            svc.create_transaction(
                transaction_type="PICKUP", customer_code="C001", lines=[],
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "abc", None])
    def test_bad_quantity(self, db_session, make_customer, make_product, quantity):
        make_customer()
        make_product()
        with pytest.raises(ValidationError) as exc:
            svc.create_transaction(
                transaction_type="PICKUP", customer_code="C001",
                lines=[{"product_code": "A", "quantity": quantity}],
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )
        assert exc.value.details["field"] == "lines[0].quantity"

    def test_unknown_customer_code(self, db_session, make_product):
        make_product()
        with pytest.raises(ValidationError) as exc:
            svc.create_transaction(
                transaction_type="PICKUP", customer_code="nope", lines=A2,
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )
        assert exc.value.details["field"] == "customer_code"

    def test_unknown_customer_id(self, db_session, make_product):
        make_product()
        with pytest.raises(NotFoundError):
            svc.create_transaction(
                transaction_type="PICKUP", customer_id=999, lines=A2,
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )

    def test_inactive_customer(self, db_session, make_customer, make_product):
        make_customer(is_active=False)
        make_product()
        with pytest.raises(ValidationError):
            svc.create_transaction(
                transaction_type="PICKUP", customer_code="C001", lines=A2,
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )

    def test_unknown_product(self, db_session, make_customer, make_product):
        make_customer()
        make_product(code="A")
        with pytest.raises(ValidationError) as exc:
            svc.create_transaction(
                transaction_type="PICKUP", customer_code="C001",
                lines=[{"product_code": "A", "quantity": 1}, {"product_code": "ZZZ", "quantity": 1}],
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )
        assert exc.value.details["field"] == "lines[1].product_code"
        assert svc.list_transactions()["total"] == 0

    @pytest.mark.parametrize("field,kwargs", [
        ("transaction_type", {"transaction_type": "LOAN"}),
        ("performed_by_role", {"performed_by_role": "MANAGER"}),
        ("performed_by", {"performed_by": "   "}),
    ])
    def test_bad_header_fields(self, db_session, make_customer, make_product, field, kwargs):
        make_customer()
        make_product()
        params = dict(
            transaction_type="PICKUP", customer_code="C001", lines=A2,
            performed_by="Jonas", performed_by_role="EMPLOYEE",
        )
        params.update(kwargs)
        with pytest.raises(ValidationError) as exc:
            svc.create_transaction(**params)
        assert exc.value.details["field"] == field

    def test_prices_are_snapshots(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        product = make_product(price_cents=10_000)
        txn = make_transaction(customer, A2)

        product.base_price_cents = 99_000
        db_session.commit()

        reloaded = svc.get_transaction(txn.id)
        assert reloaded.lines[0].unit_price_cents == 10_000
        assert reloaded.total_amount_cents == 20_000

    def test_confirm_requires_signature(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)

        with pytest.raises(ValidationError) as exc:
            svc.confirm_transaction(txn.id, confirmed_by="Petras", signature_data="")
        assert exc.value.details["field"] == "signature_data"
        assert svc.get_transaction(txn.id).status == "PENDING"
        assert customer.current_balance_cents == 0


class TestNumbering:
    def test_sequences_per_type(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        p1 = make_transaction(customer, A2)
        p2 = make_transaction(customer, A2)
        r1 = make_transaction(customer, A2, transaction_type="RETURN")

        assert p1.transaction_number == "P-000001"
        assert p2.transaction_number == "P-000002"
        assert r1.transaction_number == "R-000001"

    def test_explicit_duplicate_number_conflicts(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        make_transaction(customer, A2, transaction_number="P-777")

        with pytest.raises(ConflictError):
            make_transaction(customer, A2, transaction_number="P-777")

    def test_lookup_by_number_is_case_insensitive(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)
        assert svc.get_transaction_by_number("p-000001").id == txn.id
        with pytest.raises(NotFoundError):
            svc.get_transaction_by_number("P-999999")

    def test_explicit_number_ahead_of_sequence_is_skipped(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        make_transaction(customer, A2, transaction_number="P-000002")

        first = make_transaction(customer, A2)
        second = make_transaction(customer, A2)
        third = make_transaction(customer, A2)

        assert first.transaction_number == "P-000001"
        assert second.transaction_number == "P-000003"
        assert third.transaction_number == "P-000004"

    def test_explicit_number_is_normalized(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2, transaction_number="p-900")

        assert txn.transaction_number == "P-900"
        assert svc.get_transaction_by_number("p-900").id == txn.id
        with pytest.raises(ConflictError):
            make_transaction(customer, A2, transaction_number="P-900")


class TestQuickPickupAndPreview:
    def test_quick_pickup_by_codes(self, db_session, make_customer, make_product):
        make_customer(code="B001")
        make_product(code="SOCKET-2P", price_cents=650)
        txn, credit = svc.create_quick_pickup(
            customer_code="b001",
            items=[{"product_code": "socket-2p", "quantity": 4}],
            performed_by="Ona",
            performed_by_role="customer",
        )
        assert txn.transaction_type == "PICKUP"
        assert txn.performed_by_role == "CUSTOMER"
        assert txn.total_amount_cents == 2_600
        assert credit["is_over_limit"] is False

    def test_preview_writes_nothing(self, db_session, make_customer, make_product):
        customer = make_customer(limit_cents=10_000, balance_cents=9_000)
        make_product(price_cents=5_000)
        check = svc.preview_transaction(
            transaction_type="PICKUP", customer_id=customer.id, lines=[{"product_code": "A", "quantity": 1}],
        )
        assert check["total_amount_cents"] == 5_000
        assert check["is_over_limit"] is True
        assert svc.list_transactions()["total"] == 0


class TestReturnFromPickup:
    def _confirmed_pickup(self, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product(code="A", price_cents=10_000)
        make_product(code="B", price_cents=2_000)
        pickup = make_transaction(customer, [
            {"product_code": "A", "quantity": 3},
            {"product_code": "B", "quantity": 1},
        ])
        confirm(pickup.id)
        return customer, pickup

    def test_return_uses_pickup_prices(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer, pickup = self._confirmed_pickup(make_customer, make_product, make_transaction, confirm)
        db_session.query(Product).filter_by(code="A").one().base_price_cents = 50_000
        db_session.commit()

        ret, credit = svc.create_return_from_pickup(
            pickup_id=pickup.id,
            lines=[{"product_code": "A", "quantity": 2}],
            performed_by="Jonas",
            performed_by_role="EMPLOYEE",
        )
        assert ret.transaction_type == "RETURN"
        assert ret.status == "PENDING"
        assert ret.original_transaction_number == pickup.transaction_number
        assert ret.total_amount_cents == 20_000
        assert ret.notes == f"Return from {pickup.transaction_number}"
        assert credit["limit_checked"] is False

        confirm(ret.id)
        assert customer.current_balance_cents == 32_000 - 20_000
        assert svc.get_transaction(pickup.id).status == "CONFIRMED"

    def test_cannot_return_more_than_picked(self, db_session, make_customer, make_product, make_transaction, confirm):
        _, pickup = self._confirmed_pickup(make_customer, make_product, make_transaction, confirm)
        svc.create_return_from_pickup(
            pickup_id=pickup.id, lines=[{"product_code": "A", "quantity": 2}],
            performed_by="Jonas", performed_by_role="EMPLOYEE",
        )
        with pytest.raises(ValidationError) as exc:
            svc.create_return_from_pickup(
                pickup_id=pickup.id, lines=[{"product_code": "A", "quantity": 2}],
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )
        assert exc.value.details["available"] == 1

    def test_cancelled_return_frees_quantity(self, db_session, make_customer, make_product, make_transaction, confirm):
        _, pickup = self._confirmed_pickup(make_customer, make_product, make_transaction, confirm)
        first, _ = svc.create_return_from_pickup(
            pickup_id=pickup.id, lines=[{"product_code": "A", "quantity": 3}],
            performed_by="Jonas", performed_by_role="EMPLOYEE",
        )
        svc.cancel_transaction(first.id, reason="wrong pickup")

        again, _ = svc.create_return_from_pickup(
            pickup_id=pickup.id, lines=[{"product_code": "A", "quantity": 3}],
            performed_by="Jonas", performed_by_role="EMPLOYEE",
        )
        assert again.total_items == 3

    def test_product_not_on_pickup(self, db_session, make_customer, make_product, make_transaction, confirm):
        _, pickup = self._confirmed_pickup(make_customer, make_product, make_transaction, confirm)
        make_product(code="C")
        with pytest.raises(ValidationError):
            svc.create_return_from_pickup(
                pickup_id=pickup.id, lines=[{"product_code": "C", "quantity": 1}],
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )

    def test_pending_pickup_cannot_be_returned(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        pickup = make_transaction(customer, A2)
        with pytest.raises(InvalidStateError):
            svc.create_return_from_pickup(
                pickup_id=pickup.id, lines=[{"product_code": "A", "quantity": 1}],
                performed_by="Jonas", performed_by_role="EMPLOYEE",
            )


class TestInvoiceAndReverse:
    def test_invoice_batch(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        t1 = make_transaction(customer, A2)
        t2 = make_transaction(customer, A2)
        confirm(t1.id)
        confirm(t2.id)

        invoiced = svc.mark_invoiced([t1.id, t2.id, t1.id], invoice_reference="INV-2026-10")
        assert [t.status for t in invoiced] == ["INVOICED", "INVOICED"]
        assert invoiced[0].invoice_reference == "INV-2026-10"
        assert customer.current_balance_cents == 40_000

    def test_invoice_is_all_or_nothing(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        t1 = make_transaction(customer, A2)
        t2 = make_transaction(customer, A2)
        confirm(t1.id)

        with pytest.raises(InvalidStateError):
            svc.mark_invoiced([t1.id, t2.id], invoice_reference="INV-1")
        assert svc.get_transaction(t1.id).status == "CONFIRMED"
        assert svc.get_transaction(t1.id).invoice_reference is None

    def test_reverse_restores_balance(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)
        confirm(txn.id)

        reversed_txn = svc.reverse_transaction(txn.id, reason="wrong customer", reversed_by="admin")
        assert reversed_txn.status == "CANCELLED"
        assert reversed_txn.reversed_by == "admin"
        assert reversed_txn.reversed_at is not None
        assert customer.current_balance_cents == 0

        with pytest.raises(InvalidStateError):
            svc.reverse_transaction(txn.id, reason="again", reversed_by="admin")
        assert customer.current_balance_cents == 0

    def test_invoiced_cannot_be_reversed(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)
        confirm(txn.id)
        svc.mark_invoiced([txn.id], invoice_reference="INV-1")

        with pytest.raises(InvalidStateError):
            svc.reverse_transaction(txn.id, reason="late", reversed_by="admin")
        assert customer.current_balance_cents == 20_000


class TestConcurrentModification:
    def test_status_changed_underneath_raises_conflict(self, db_session, make_customer, make_product, make_transaction):
        customer = make_customer()
        make_product()
        txn = make_transaction(customer, A2)

        # Load the PENDING row, then flip it behind the ORM's back
        stale = svc.get_transaction(txn.id)
        assert stale.status == "PENDING"
        db_session.execute(
            text("UPDATE credit_transactions SET status = 'CONFIRMED' WHERE id = :id"),
            {"id": txn.id},
        )

        with pytest.raises(ConflictError):
            svc.confirm_transaction(txn.id, confirmed_by="Petras", signature_data="sig")

        # The whole unit rolled back, including the out-of-band update
        assert svc.get_transaction(txn.id).status == "PENDING"
        assert customer.current_balance_cents == 0
        assert db_session.query(LedgerEvent).filter_by(event_type="BALANCE_APPLIED").count() == 0


class TestQueries:
    def test_list_filters_and_pagination(self, db_session, make_customer, make_product, make_transaction, confirm):
        c1 = make_customer(code="C001")
        c2 = make_customer(code="C002", first_name="Ona", last_name="Onaite")
        make_product()
        for _ in range(3):
            make_transaction(c1, A2)
        t = make_transaction(c2, A2)
        confirm(t.id)

        page = svc.list_transactions(customer_id=c1.id, page=0, size=2)
        assert page["total"] == 3
        assert page["total_pages"] == 2
        assert page["has_next"] is True
        assert len(page["items"]) == 2
        assert page["items"][0]["transaction_number"] == "P-000003"

        confirmed = svc.list_transactions(status="confirmed")
        assert [i["customer_code"] for i in confirmed["items"]] == ["C002"]

        with pytest.raises(ValidationError):
            svc.list_transactions(status="LOST")

    def test_search_by_number_and_name(self, db_session, make_customer, make_product, make_transaction):
        c1 = make_customer(code="C001", first_name="Jonas")
        c2 = make_customer(code="B001", customer_type="BUSINESS", company_name="UAB Elektra", first_name=None, last_name=None)
        make_product()
        make_transaction(c1, A2)
        make_transaction(c2, A2)

        assert svc.search_transactions("elektra")["total"] == 1
        assert svc.search_transactions("p-00000")["total"] == 2
        assert svc.search_transactions("jonas")["items"][0]["customer_code"] == "C001"

    def test_recent_and_pending(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        t1 = make_transaction(customer, A2)
        t2 = make_transaction(customer, A2)
        t3 = make_transaction(customer, A2)
        confirm(t2.id)

        recent = svc.get_recent_customer_transactions(customer.id, limit=2)
        assert [t.id for t in recent] == [t3.id, t2.id]

        pending = svc.get_pending_customer_transactions(customer.id)
        assert [t.id for t in pending] == [t1.id, t3.id]

        with pytest.raises(NotFoundError):
            svc.get_pending_customer_transactions(999)

    def test_monthly_statement_uses_local_month(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        pickup = make_transaction(customer, A2)
        ret = make_transaction(customer, [{"product_code": "A", "quantity": 1}], transaction_type="RETURN")
        make_transaction(customer, A2)  # pending, never on a statement
        confirm(pickup.id)
        confirm(ret.id)

        # 22:30 UTC on Jan 31 is already February 1st in Vilnius
        for txn in (pickup, ret):
            txn.created_at = datetime(2026, 1, 31, 22, 30)
        db_session.commit()

        february = svc.get_monthly_statement(customer.id, 2026, 2)
        assert [t["transaction_number"] for t in february["transactions"]] == ["P-000001", "R-000001"]
        assert february["pickup_total_cents"] == 20_000
        assert february["return_total_cents"] == 10_000
        assert february["net_change_cents"] == 10_000
        assert february["period_start"] == "2026-01-31T22:00:00Z"

        january = svc.get_monthly_statement(customer.id, 2026, 1)
        assert january["transactions"] == []
        assert january["net_change_cents"] == 0

    def test_statement_current_month(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product()
        confirm(make_transaction(customer, A2).id)

        now = datetime.now(ZoneInfo("Europe/Vilnius"))
        statement = svc.get_monthly_statement(customer.id, now.year, now.month)
        assert statement["pickup_total_cents"] == 20_000

    def test_statement_rejects_bad_month(self, db_session, make_customer):
        customer = make_customer()
        with pytest.raises(ValidationError):
            svc.get_monthly_statement(customer.id, 2026, 13)

    def test_frequent_products(self, db_session, make_customer, make_product, make_transaction, confirm):
        customer = make_customer()
        make_product(code="A")
        make_product(code="B", price_cents=100)
        confirm(make_transaction(customer, [{"product_code": "A", "quantity": 1}]).id)
        confirm(make_transaction(customer, [{"product_code": "B", "quantity": 5}, {"product_code": "A", "quantity": 1}]).id)
        make_transaction(customer, [{"product_code": "A", "quantity": 50}])  # pending, ignored

        rows = svc.get_frequent_products(customer.id)
        assert [(r["product_code"], r["total_quantity"], r["pickup_count"]) for r in rows] == [
            ("B", 5, 1),
            ("A", 2, 2),
        ]
