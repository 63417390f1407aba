"""Unit tests for the commission split and the settlement record."""

import pytest

from roadside.domain.enums import TransactionStatus, TransferStatus
from roadside.domain.settlement import (
    Transaction,
    TransactionAlreadyConfirmed,
    split_commission,
)


class TestSplitCommission:
    def test_default_is_85_15(self):
        split = split_commission(150.0)
        assert split.provider_amount == 127.5
        assert split.platform_amount == 22.5

    def test_custom_percentage(self):
        split = split_commission(200.0, 80.0)
        assert (split.provider_amount, split.platform_amount) == (160.0, 40.0)

    def test_rounding_keeps_total(self):
        split = split_commission(99.99)
        assert split.provider_amount == 84.99
        assert split.provider_amount + split.platform_amount == pytest.approx(99.99)

    @pytest.mark.parametrize("total, pct", [(0, 85.0), (-5, 85.0), (100, 0), (100, 101)])
    def test_rejects_bad_input(self, total, pct):
        with pytest.raises(ValueError):
            split_commission(total, pct)


class TestTransaction:
    def _tx(self) -> Transaction:
        return Transaction.from_split(1, split_commission(150.0))

    def test_new_transaction_needs_transfer(self):
        tx = self._tx()
        assert tx.status == TransactionStatus.PENDING
        assert tx.needs_transfer

    def test_initiated_transfer_is_not_repeated(self):
        tx = self._tx()
        tx.transfer_initiated("TRF_1")
        assert tx.transfer_status == TransferStatus.INITIATED
        assert not tx.needs_transfer

    def test_failed_transfer_can_be_retried(self):
        tx = self._tx()
        tx.transfer_failed("insufficient balance")
        assert tx.needs_transfer
        assert tx.notes == "Transfer failed: insufficient balance"
        tx.transfer_initiated("TRF_2")
        assert tx.notes is None

    def test_confirm_once(self):
        tx = self._tx()
        tx.confirm()
        assert tx.is_confirmed
        assert tx.confirmed_at is not None
        with pytest.raises(TransactionAlreadyConfirmed):
            tx.confirm()
