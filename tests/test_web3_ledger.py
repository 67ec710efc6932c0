"""Web3Ledger against stubbed contract calls and node RPCs."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import ContractLogicError, TimeExhausted

from certchain.blockchain import Web3Ledger
from certchain.errors import LedgerRecordMissing, LedgerRejected, LedgerUnreachable

CONTRACT = "0xfb736d0e99d81dc35D6a6dc3d6231495aA640E46"
SIGNER_KEY = "0x" + "11" * 32
SENDER = "0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A"
TX_HASH = b"\x12" * 32
FP = "0x" + "ab" * 32
ISSUE_ARGS = (FP, "E100", "Asha Rao", "B.Sc", "NIT", 2024)


def ready(value):
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


def stubbed_ledger(receipt=None, build_error=None, receipt_error=None):
    ledger = Web3Ledger("http://127.0.0.1:1", CONTRACT, private_key=SIGNER_KEY)
    ledger.account = MagicMock(
        address=SENDER,
        sign_transaction=MagicMock(return_value=SimpleNamespace(raw_transaction=b"raw")),
    )

    ledger.w3 = MagicMock()
    eth = ledger.w3.eth
    eth.get_transaction_count = AsyncMock(return_value=7)
    eth.chain_id = ready(1337)
    eth.send_raw_transaction = AsyncMock(return_value=TX_HASH)
    eth.wait_for_transaction_receipt = AsyncMock(
        return_value=receipt or {"status": 1}, side_effect=receipt_error
    )

    ledger.contract = MagicMock()
    ledger.contract.functions.issueCertificate.return_value.build_transaction = AsyncMock(
        return_value={"to": CONTRACT, "data": "0x"}, side_effect=build_error
    )
    return ledger


def view(ledger, name, result=None, error=None):
    getattr(ledger.contract.functions, name).return_value.call = AsyncMock(
        return_value=result, side_effect=error
    )


class TestSigner:
    @pytest.mark.asyncio
    async def test_issue_without_key_is_rejected(self):
        ledger = Web3Ledger("http://127.0.0.1:1", CONTRACT)
        with pytest.raises(LedgerRejected, match="no signing key"):
            await ledger.issue(*ISSUE_ARGS)

    @pytest.mark.asyncio
    async def test_non_admin_signer_is_rejected(self):
        ledger = Web3Ledger("http://127.0.0.1:1", CONTRACT, private_key=SIGNER_KEY,
                            admin_address="0xE894bc126822B8FBbeD56133E27221a0fC74DAd3")
        with pytest.raises(LedgerRejected, match="unauthorized signer"):
            await ledger.issue(*ISSUE_ARGS)


class TestIssue:
    @pytest.mark.asyncio
    async def test_confirmed_transaction_returns_hex_hash(self):
        ledger = stubbed_ledger()

        tx_ref = await ledger.issue(*ISSUE_ARGS)

        assert tx_ref == "0x" + "12" * 32
        ledger.contract.functions.issueCertificate.assert_called_once_with(
            FP, "E100", "Asha Rao", "B.Sc", "NIT", 2024, ""
        )
        ledger.w3.eth.send_raw_transaction.assert_awaited_once_with(b"raw")

    @pytest.mark.asyncio
    async def test_nonce_counts_pending_transactions(self):
        ledger = stubbed_ledger()

        await ledger.issue(*ISSUE_ARGS)

        ledger.w3.eth.get_transaction_count.assert_awaited_once_with(SENDER, "pending")
        build = ledger.contract.functions.issueCertificate.return_value.build_transaction
        assert build.await_args.args[0] == {"from": SENDER, "nonce": 7, "chainId": 1337}

    @pytest.mark.asyncio
    async def test_contract_revert_is_rejected(self):
        ledger = stubbed_ledger(build_error=ContractLogicError("execution reverted: exists"))
        with pytest.raises(LedgerRejected, match="contract rejected"):
            await ledger.issue(*ISSUE_ARGS)
        ledger.w3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_receipt_is_rejected(self):
        ledger = stubbed_ledger(receipt={"status": 0})
        with pytest.raises(LedgerRejected, match="reverted"):
            await ledger.issue(*ISSUE_ARGS)

    @pytest.mark.asyncio
    async def test_missing_receipt_is_unreachable(self):
        ledger = stubbed_ledger(receipt_error=TimeExhausted("no receipt"))
        with pytest.raises(LedgerUnreachable, match="no receipt within"):
            await ledger.issue(*ISSUE_ARGS)

    @pytest.mark.asyncio
    async def test_connection_failure_is_unreachable(self):
        ledger = stubbed_ledger()
        ledger.w3.eth.get_transaction_count.side_effect = ConnectionRefusedError("refused")
        with pytest.raises(LedgerUnreachable, match="unreachable"):
            await ledger.issue(*ISSUE_ARGS)


class TestReads:
    @pytest.mark.asyncio
    async def test_verify_true(self):
        ledger = stubbed_ledger()
        view(ledger, "verifyCertificateView", result=True)
        assert await ledger.verify(FP) is True
        ledger.contract.functions.verifyCertificateView.assert_called_once_with(FP)

    @pytest.mark.asyncio
    async def test_verify_revert_means_absent(self):
        ledger = stubbed_ledger()
        view(ledger, "verifyCertificateView", error=ContractLogicError("execution reverted"))
        assert await ledger.verify(FP) is False

    @pytest.mark.asyncio
    async def test_fetch_unpacks_contract_tuple(self):
        ledger = stubbed_ledger()
        view(ledger, "getCertificate", result=(
            "Asha Rao", "E100", "B.Sc", "NIT", 2024, 1717200000, "", SENDER,
        ))

        fields = await ledger.fetch(FP)

        assert fields.holder_name == "Asha Rao"
        assert fields.enrollment_id == "E100"
        assert fields.program == "B.Sc"
        assert fields.institution == "NIT"
        assert fields.issue_year == 2024
        assert fields.issued_at == datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert fields.issuer_address == SENDER

    @pytest.mark.asyncio
    async def test_fetch_blank_entry_is_missing(self):
        ledger = stubbed_ledger()
        view(ledger, "getCertificate", result=("", "", "", "", 0, 0, "", "0x" + "00" * 20))
        with pytest.raises(LedgerRecordMissing):
            await ledger.fetch(FP)

    @pytest.mark.asyncio
    async def test_fetch_revert_is_missing(self):
        ledger = stubbed_ledger()
        view(ledger, "getCertificate", error=ContractLogicError("execution reverted"))
        with pytest.raises(LedgerRecordMissing):
            await ledger.fetch(FP)


@pytest.mark.asyncio
async def test_close_disconnects_provider():
    ledger = stubbed_ledger()
    ledger.w3.provider.disconnect = AsyncMock()

    await ledger.close()

    ledger.w3.provider.disconnect.assert_awaited_once()
