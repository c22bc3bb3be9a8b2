# Overview: Pytest coverage for return cases; approval, inspection, restock and refund.

"""
Return case workflow tests.

Covers:
- Creation against completed orders with per-line quantity caps
- Strictly sequential stages
- Batch-validated inspection and the draft refund
- Restock into inventory (once, eligible lines only)
- Refund limits and single completion
"""

import pytest

from creditdesk.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from creditdesk.models import InventoryTransaction
from creditdesk.services import inventory_service
from creditdesk.services import return_service as svc


@pytest.fixture
def order_setup(db_session, make_customer, make_product, make_reason, make_order):
    """Completed order: 10 x A @ 10.00 and 4 x B @ 2.50; DEFECTIVE allows restock, DAMAGED does not."""
    customer = make_customer(code="B001", customer_type="BUSINESS", company_name="UAB Elektra")
    product_a = make_product(code="A", price_cents=10_000)
    product_b = make_product(code="B", price_cents=250)
    make_reason(code="DEFECTIVE", allows_restock=True)
    make_reason(code="DAMAGED", allows_restock=False)
    order = make_order(customer, [(product_a, 10, 1_000), (product_b, 4, 250)])
    line_a, line_b = order.lines
    return {
        "customer": customer,
        "order": order,
        "line_a": line_a,
        "line_b": line_b,
        "product_a": product_a,
        "product_b": product_b,
    }


def _create(setup, lines=None, **kwargs):
    if lines is None:
        lines = [{"order_line_id": setup["line_a"].id, "quantity": 10, "reason_code": "DEFECTIVE"}]
    return svc.create_return(order_id=setup["order"].id, lines=lines, requested_by="Ona", **kwargs)


def _received(setup, lines=None):
    case = _create(setup, lines)
    svc.approve_return(case.id)
    svc.mark_received(case.id, received_by="Warehouse")
    return case


def _inspect_all(case, accepted, rejected, condition="GOOD"):
    line = case.lines[0]
    return svc.inspect_return(
        case.id,
        [{"line_id": line.id, "quantity_accepted": accepted, "quantity_rejected": rejected, "condition": condition}],
        inspected_by="Inspector",
    )


class TestCreateReturn:
    def test_create_partial(self, order_setup):
        case = _create(order_setup, [
            {"order_line_id": order_setup["line_a"].id, "quantity": 3, "reason_code": "defective"},
        ])
        assert case.status == "PENDING"
        assert case.return_type == "PARTIAL"
        assert case.return_number == "RET-000001"
        assert case.customer_id == order_setup["customer"].id
        assert case.total_amount_cents == 3_000
        assert case.refund_amount_cents == 0
        assert case.lines[0].quantity_ordered == 10
        assert case.lines[0].condition == "UNKNOWN"

    def test_create_full(self, order_setup):
        case = _create(order_setup, [
            {"order_line_id": order_setup["line_a"].id, "quantity": 10, "reason_code": "DEFECTIVE"},
            {"order_line_id": order_setup["line_b"].id, "quantity": 4, "reason_code": "DAMAGED"},
        ])
        assert case.return_type == "FULL"
        assert case.total_amount_cents == 11_000

    def test_quantity_capped_across_cases(self, order_setup):
        _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 6, "reason_code": "DEFECTIVE"}])
        with pytest.raises(ValidationError) as exc:
            _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 5, "reason_code": "DEFECTIVE"}])
        assert exc.value.details["available"] == 4

    def test_rejected_case_frees_quantity(self, order_setup):
        first = _create(order_setup)
        svc.reject_return(first.id, reason="Outside return window")
        second = _create(order_setup)
        assert second.return_number == "RET-000002"

    def test_empty_lines(self, order_setup):
        with pytest.raises(ValidationError):
            _create(order_setup, [])

    def test_unknown_reason(self, order_setup):
        with pytest.raises(ValidationError) as exc:
            _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "BORED"}])
        assert exc.value.details["field"] == "lines[0].reason_code"

    def test_line_not_on_order(self, order_setup):
        with pytest.raises(ValidationError):
            _create(order_setup, [{"order_line_id": 9999, "quantity": 1, "reason_code": "DEFECTIVE"}])

    def test_order_must_be_completed(self, db_session, make_customer, make_product, make_reason, make_order):
        customer = make_customer()
        product = make_product()
        make_reason()
        order = make_order(customer, [(product, 1, 100)], status="PROCESSING")
        with pytest.raises(InvalidStateError):
            svc.create_return(
                order_id=order.id,
                lines=[{"order_line_id": order.lines[0].id, "quantity": 1, "reason_code": "DEFECTIVE"}],
                requested_by="Ona",
            )

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            svc.create_return(
                order_id=12345,
                lines=[{"order_line_id": 1, "quantity": 1, "reason_code": "DEFECTIVE"}],
                requested_by="Ona",
            )

    def test_explicit_number_conflict(self, order_setup):
        _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "DEFECTIVE"}],
                return_number="RET-X")
        with pytest.raises(ConflictError):
            _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "DEFECTIVE"}],
                    return_number="RET-X")

    def test_explicit_number_normalized_and_skipped_by_sequence(self, order_setup):
        one = [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "DEFECTIVE"}]
        explicit = _create(order_setup, one, return_number="ret-000001")
        assert explicit.return_number == "RET-000001"
        assert svc.get_return_by_number("ret-000001").id == explicit.id

        assert _create(order_setup, one).return_number == "RET-000002"
        assert _create(order_setup, one).return_number == "RET-000003"


class TestWorkflow:
    def test_approve_sets_expected_date(self, order_setup):
        case = _create(order_setup)
        approved = svc.approve_return(case.id, notes="ok to send back")
        assert approved.status == "APPROVED"
        assert approved.approved_at is not None
        assert (approved.expected_date - approved.approved_at).days == 7
        assert approved.internal_notes == "ok to send back"

    def test_reject_requires_reason_and_is_terminal(self, order_setup):
        case = _create(order_setup)
        with pytest.raises(ValidationError):
            svc.reject_return(case.id, reason="")
        rejected = svc.reject_return(case.id, reason="Outside return window")
        assert rejected.status == "REJECTED"
        assert rejected.rejection_reason == "Outside return window"

        with pytest.raises(InvalidStateError):
            svc.approve_return(case.id)

    def test_shipping_is_optional(self, order_setup):
        direct = _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "DEFECTIVE"}])
        svc.approve_return(direct.id)
        assert svc.mark_received(direct.id).status == "RECEIVED"

        shipped = _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "DEFECTIVE"}])
        svc.approve_return(shipped.id)
        assert svc.mark_in_transit(shipped.id).status == "IN_TRANSIT"
        received = svc.mark_received(shipped.id)
        assert received.status == "RECEIVED"
        assert received.shipped_at is not None

    def test_stages_cannot_be_skipped(self, order_setup):
        case = _create(order_setup)
        with pytest.raises(InvalidStateError):
            svc.mark_received(case.id)
        with pytest.raises(InvalidStateError):
            _inspect_all(case, 10, 0)
        with pytest.raises(InvalidStateError):
            svc.process_refund(case.id, refund_method="CASH", amount_cents=0)
        assert svc.get_return(case.id).status == "PENDING"


class TestInspection:
    def test_draft_refund_from_accepted_quantity(self, order_setup):
        case = _received(order_setup)
        inspected = _inspect_all(case, accepted=7, rejected=3)
        assert inspected.status == "INSPECTED"
        assert inspected.refund_amount_cents == 7 * 1_000
        line = inspected.lines[0]
        assert line.quantity_accepted == 7
        assert line.quantity_rejected == 3
        assert line.condition == "GOOD"
        assert line.refund_amount_cents == 7_000
        assert line.restock_eligible is True

    def test_quantities_must_add_up(self, order_setup):
        case = _received(order_setup)
        with pytest.raises(ValidationError) as exc:
            _inspect_all(case, accepted=8, rejected=3)
        assert exc.value.details["quantity_returned"] == 10

        reloaded = svc.get_return(case.id)
        assert reloaded.status == "RECEIVED"
        assert reloaded.lines[0].quantity_accepted == 0
        assert reloaded.refund_amount_cents == 0

    def test_every_line_must_be_inspected(self, order_setup):
        case = _received(order_setup, [
            {"order_line_id": order_setup["line_a"].id, "quantity": 2, "reason_code": "DEFECTIVE"},
            {"order_line_id": order_setup["line_b"].id, "quantity": 1, "reason_code": "DAMAGED"},
        ])
        first, second = case.lines
        with pytest.raises(ValidationError) as exc:
            svc.inspect_return(case.id, [
                {"line_id": first.id, "quantity_accepted": 2, "quantity_rejected": 0, "condition": "GOOD"},
            ])
        assert exc.value.details["missing_line_ids"] == [second.id]

        # A later bad line rolls back the good one too
        with pytest.raises(ValidationError):
            svc.inspect_return(case.id, [
                {"line_id": first.id, "quantity_accepted": 2, "quantity_rejected": 0, "condition": "GOOD"},
                {"line_id": second.id, "quantity_accepted": 1, "quantity_rejected": 0, "condition": "UNKNOWN"},
            ])
        assert svc.get_return(case.id).lines[0].condition == "UNKNOWN"

    def test_duplicate_and_foreign_lines(self, order_setup):
        case = _received(order_setup)
        line = case.lines[0]
        row = {"line_id": line.id, "quantity_accepted": 10, "quantity_rejected": 0, "condition": "GOOD"}
        with pytest.raises(ValidationError):
            svc.inspect_return(case.id, [row, row])
        with pytest.raises(ValidationError):
            svc.inspect_return(case.id, [dict(row, line_id=9999)])

    @pytest.mark.parametrize("reason,condition,accepted,eligible", [
        ("DEFECTIVE", "PERFECT", 5, True),
        ("DEFECTIVE", "DAMAGED", 5, False),
        ("DEFECTIVE", "GOOD", 0, False),
        ("DAMAGED", "GOOD", 5, False),
    ])
    def test_restock_eligibility(self, order_setup, reason, condition, accepted, eligible):
        case = _received(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 5, "reason_code": reason}])
        inspected = _inspect_all(case, accepted=accepted, rejected=5 - accepted, condition=condition)
        assert inspected.lines[0].restock_eligible is eligible


class TestCompletion:
    def test_restock_writes_inventory_once(self, order_setup):
        case = _received(order_setup)
        _inspect_all(case, accepted=7, rejected=3)

        done = svc.restock_return(case.id, restocked_by="Warehouse")
        assert done.status == "COMPLETED"
        assert done.restocked_at is not None
        assert done.lines[0].restocked is True
        assert inventory_service.get_quantity_on_hand(order_setup["product_a"].id) == 7

        with pytest.raises(InvalidStateError):
            svc.restock_return(case.id)
        assert inventory_service.get_quantity_on_hand(order_setup["product_a"].id) == 7

        movements = inventory_service.list_inventory_transactions(product_id=order_setup["product_a"].id)
        assert len(movements) == 1
        assert movements[0].type == "RETURN"
        assert movements[0].note == f"Restock from {case.return_number}"

    def test_ineligible_lines_are_not_restocked(self, order_setup, db_session):
        case = _received(order_setup, [{"order_line_id": order_setup["line_b"].id, "quantity": 4, "reason_code": "DAMAGED"}])
        _inspect_all(case, accepted=4, rejected=0)

        done = svc.restock_return(case.id)
        assert done.status == "COMPLETED"
        assert db_session.query(InventoryTransaction).count() == 0

    def test_refund_up_to_draft_amount(self, order_setup):
        case = _received(order_setup)
        _inspect_all(case, accepted=7, rejected=3)

        with pytest.raises(ValidationError) as exc:
            svc.process_refund(case.id, refund_method="BANK_TRANSFER", amount_cents=7_001)
        assert exc.value.details["max"] == 7_000

        refunded = svc.process_refund(case.id, refund_method="BANK_TRANSFER", amount_cents=6_500, reference="TRX-1")
        assert refunded.status == "COMPLETED"
        assert refunded.refund_status == "COMPLETED"
        assert refunded.refunded_amount_cents == 6_500
        assert refunded.refund_reference == "TRX-1"

        with pytest.raises(InvalidStateError):
            svc.process_refund(case.id, refund_method="CASH", amount_cents=100)

    def test_restock_then_refund(self, order_setup):
        case = _received(order_setup)
        _inspect_all(case, accepted=10, rejected=0)
        svc.restock_return(case.id)
        refunded = svc.process_refund(case.id, refund_method="CASH", amount_cents=10_000)
        assert refunded.status == "COMPLETED"
        assert refunded.refund_status == "COMPLETED"
        assert refunded.restocked_at is not None

    def test_refund_then_restock(self, order_setup):
        case = _received(order_setup)
        _inspect_all(case, accepted=10, rejected=0)
        svc.process_refund(case.id, refund_method="CASH", amount_cents=10_000)
        restocked = svc.restock_return(case.id)
        assert restocked.status == "COMPLETED"
        assert inventory_service.get_quantity_on_hand(order_setup["product_a"].id) == 10


class TestQueries:
    def test_lookup_and_list(self, order_setup):
        first = _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "DEFECTIVE"}])
        second = _create(order_setup, [{"order_line_id": order_setup["line_a"].id, "quantity": 1, "reason_code": "DEFECTIVE"}])
        svc.approve_return(second.id)

        assert svc.get_return_by_number("ret-000001").id == first.id
        with pytest.raises(NotFoundError):
            svc.get_return(999)

        pending = svc.list_returns(status="PENDING")
        assert [item["id"] for item in pending["items"]] == [first.id]

        mine = svc.list_returns(customer_id=order_setup["customer"].id, page=0, size=1)
        assert mine["total"] == 2
        assert mine["has_next"] is True
        assert mine["items"][0]["id"] == second.id

    def test_reasons(self, db_session, make_reason):
        make_reason(code="DEFECTIVE")
        make_reason(code="OLD", is_active=False)
        assert [r.code for r in svc.list_return_reasons()] == ["DEFECTIVE"]
        assert [r.code for r in svc.list_return_reasons(active_only=False)] == ["DEFECTIVE", "OLD"]
