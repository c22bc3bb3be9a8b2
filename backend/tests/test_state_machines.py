# Overview: Pytest coverage for the transaction and return-case transition tables.

import pytest

from creditdesk.errors import InvalidStateError
from creditdesk.services.state_machines import (
    RETURN_TRANSITIONS,
    TRANSACTION_TRANSITIONS,
    ReturnAction,
    ReturnStatus,
    TransactionAction,
    TransactionStatus,
    allowed_return_actions,
    allowed_transaction_actions,
    next_return_status,
    next_transaction_status,
)


class TestTransactionTransitions:
    def test_happy_path(self):
        assert next_transaction_status("PENDING", TransactionAction.CONFIRM) == TransactionStatus.CONFIRMED
        assert next_transaction_status("CONFIRMED", TransactionAction.INVOICE) == TransactionStatus.INVOICED
        assert next_transaction_status("PENDING", TransactionAction.CANCEL) == TransactionStatus.CANCELLED

    @pytest.mark.parametrize("status,action", [
        ("CONFIRMED", TransactionAction.CONFIRM),
        ("CONFIRMED", TransactionAction.CANCEL),
        ("CANCELLED", TransactionAction.CONFIRM),
        ("INVOICED", TransactionAction.REVERSE),
        ("PENDING", TransactionAction.INVOICE),
    ])
    def test_illegal_pairs_raise_with_state_and_action(self, status, action):
        with pytest.raises(InvalidStateError) as exc:
            next_transaction_status(status, action)
        assert exc.value.details == {"current_state": status, "action": action.value}
        assert exc.value.status_code == 409

    def test_every_pair_is_either_mapped_or_rejected(self):
        for status in TransactionStatus:
            for action in TransactionAction:
                if (status, action) in TRANSACTION_TRANSITIONS:
                    assert next_transaction_status(status, action) == TRANSACTION_TRANSITIONS[(status, action)]
                else:
                    with pytest.raises(InvalidStateError):
                        next_transaction_status(status, action)

    def test_terminal_states_have_no_actions(self):
        assert allowed_transaction_actions("CANCELLED") == []
        assert allowed_transaction_actions("INVOICED") == []
        assert set(allowed_transaction_actions("PENDING")) == {TransactionAction.CONFIRM, TransactionAction.CANCEL}

    def test_unknown_status_string_is_rejected(self):
        with pytest.raises(ValueError):
            next_transaction_status("SHIPPED", TransactionAction.CONFIRM)


class TestReturnTransitions:
    def test_stages_are_sequential(self):
        assert next_return_status("PENDING", ReturnAction.APPROVE) == ReturnStatus.APPROVED
        assert next_return_status("APPROVED", ReturnAction.SHIP) == ReturnStatus.IN_TRANSIT
        assert next_return_status("IN_TRANSIT", ReturnAction.RECEIVE) == ReturnStatus.RECEIVED
        assert next_return_status("APPROVED", ReturnAction.RECEIVE) == ReturnStatus.RECEIVED
        assert next_return_status("RECEIVED", ReturnAction.INSPECT) == ReturnStatus.INSPECTED
        assert next_return_status("INSPECTED", ReturnAction.RESTOCK) == ReturnStatus.COMPLETED
        assert next_return_status("INSPECTED", ReturnAction.REFUND) == ReturnStatus.COMPLETED

    @pytest.mark.parametrize("status,action", [
        ("PENDING", ReturnAction.RECEIVE),
        ("PENDING", ReturnAction.INSPECT),
        ("APPROVED", ReturnAction.INSPECT),
        ("APPROVED", ReturnAction.REJECT),
        ("RECEIVED", ReturnAction.REFUND),
        ("IN_TRANSIT", ReturnAction.SHIP),
    ])
    def test_skipping_a_stage_fails(self, status, action):
        with pytest.raises(InvalidStateError):
            next_return_status(status, action)

    def test_rejected_is_terminal(self):
        assert allowed_return_actions("REJECTED") == []
        for action in ReturnAction:
            with pytest.raises(InvalidStateError):
                next_return_status(ReturnStatus.REJECTED, action)

    def test_completed_only_allows_the_other_completion_step(self):
        assert set(allowed_return_actions("COMPLETED")) == {ReturnAction.REFUND, ReturnAction.RESTOCK}
        assert (ReturnStatus.COMPLETED, ReturnAction.APPROVE) not in RETURN_TRANSITIONS
