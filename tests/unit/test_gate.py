"""Unit tests for the claim eligibility gate."""

import pytest
from web3 import Web3

from adfaucet.services.gate import ClaimReservations, Failure, FailureKind, Reason, Success
from adfaucet.utils.errors import TransactionError, UpstreamError

from conftest import FUNDING_ADDRESS, ISSUER_ADDRESS, TX_HASH, USER_ADDRESS, make_transfer

CLAIM_WEI = Web3.to_wei("0.01", "ether")


def give_issuer_transfer(provider, *values):
    records = [make_transfer(ISSUER_ADDRESS, USER_ADDRESS, value=value) for value in values or ("100",)]
    provider.add_transfers("erc20", ISSUER_ADDRESS, USER_ADDRESS, records)


def give_prior_claim(provider):
    provider.add_transfers(
        "external", FUNDING_ADDRESS, USER_ADDRESS, [make_transfer(FUNDING_ADDRESS, USER_ADDRESS, value="0.01")]
    )


class TestReadOnlyChecks:
    """Issuer transfer, balance and prior-claim checks."""

    @pytest.mark.asyncio
    async def test_issuer_query_filters_issuer_and_token(self, gate, provider, settings):
        await gate.verify_issuer_transfer(USER_ADDRESS)

        query = provider.queries[0]
        assert query.category == ["erc20"]
        assert query.from_address == settings.issuer_address
        assert query.to_address == USER_ADDRESS
        assert query.contract_addresses == [settings.token_address]

    @pytest.mark.asyncio
    async def test_total_received_sums_display_values(self, gate, provider):
        give_issuer_transfer(provider, "1.5", "2.25")

        report = await gate.verify_issuer_transfer(USER_ADDRESS)

        assert report.verified is True
        assert report.transfers_count == 2
        assert report.total_received == 3.75
        assert report.to_dict("issuerAddress")["latestTransfer"]["value"] == "1.5"

    @pytest.mark.asyncio
    async def test_balance_equal_to_claim_amount_is_eligible(self, gate, provider):
        provider.balances[USER_ADDRESS] = CLAIM_WEI

        report = await gate.check_balance(USER_ADDRESS)

        assert report.eligible is True
        assert report.balance_formatted == "0.010000"
        assert report.to_dict()["balanceWei"] == str(CLAIM_WEI)

    @pytest.mark.asyncio
    async def test_prior_claims_look_at_native_transfers_from_funding_address(self, gate, provider, settings):
        give_prior_claim(provider)

        report = await gate.check_prior_claims(USER_ADDRESS)

        assert report.verified is True
        assert provider.queries[0].category == ["external"]
        assert provider.queries[0].from_address == settings.funding_address

    @pytest.mark.asyncio
    async def test_gas_price_never_below_floor(self, gate, provider):
        provider.network_gas_price = Web3.to_wei(1, "gwei")
        assert await gate.gas_price() == Web3.to_wei(30, "gwei")

        provider.network_gas_price = Web3.to_wei(50, "gwei")
        assert await gate.gas_price() == Web3.to_wei(50, "gwei")


class TestClaimRejections:
    """Claims stop at the first failing check and never send a transaction."""

    @pytest.mark.asyncio
    async def test_no_issuer_transfer(self, gate, provider):
        result = await gate.claim(USER_ADDRESS)

        assert isinstance(result, Failure)
        assert result.reason == Reason.NO_ISSUER_TRANSFER
        assert result.status_code == 400
        assert result.details["issuerTransfersCount"] == 0
        assert result.details["eligibility"] == {
            "issuerVerified": False,
            "balanceEligible": None,
            "alreadyClaimed": None,
        }
        assert provider.balance_calls == []
        assert provider.sent == []

    @pytest.mark.asyncio
    async def test_balance_above_claim_amount(self, gate, provider):
        give_issuer_transfer(provider)
        provider.balances[USER_ADDRESS] = CLAIM_WEI + 1

        result = await gate.claim(USER_ADDRESS)

        assert result.reason == Reason.NOT_ELIGIBLE
        assert result.status_code == 400
        assert result.details["balanceFormatted"] == "0.010000"
        assert result.details["eligibility"]["balanceEligible"] is False
        assert len(provider.queries) == 1
        assert provider.sent == []

    @pytest.mark.asyncio
    async def test_balance_rejection_applies_to_dry_run(self, gate, provider):
        give_issuer_transfer(provider)
        provider.balances[USER_ADDRESS] = 5 * CLAIM_WEI

        result = await gate.claim(USER_ADDRESS, dry_run=True)

        assert result.reason == Reason.NOT_ELIGIBLE

    @pytest.mark.asyncio
    async def test_already_claimed(self, gate, provider):
        give_issuer_transfer(provider)
        give_prior_claim(provider)

        result = await gate.claim(USER_ADDRESS)

        assert result.reason == Reason.ALREADY_CLAIMED
        assert result.details["transfersCount"] == 1
        assert result.details["eligibility"] == {
            "issuerVerified": True,
            "balanceEligible": True,
            "alreadyClaimed": True,
        }
        assert provider.sent == []

    @pytest.mark.asyncio
    async def test_upstream_error_becomes_failure(self, gate, provider):
        provider.failures["get_asset_transfers"] = UpstreamError("Alchemy API error: 503 Service Unavailable")

        result = await gate.claim(USER_ADDRESS)

        assert result.kind == FailureKind.UPSTREAM
        assert result.reason == Reason.UPSTREAM_ERROR
        assert result.status_code == 500
        assert result.details["details"] == "Alchemy API error: 503 Service Unavailable"
        assert not gate.reservations.is_reserved(USER_ADDRESS)


class TestClaimDisbursement:
    """Eligible addresses get exactly one transfer (or none in dry-run mode)."""

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, gate, provider):
        give_issuer_transfer(provider)

        result = await gate.claim(USER_ADDRESS, dry_run=True)

        assert isinstance(result, Success)
        assert result.payload["dryRun"] is True
        assert result.payload["gasPrice"] == str(Web3.to_wei(30, "gwei"))
        assert "transactionHash" not in result.payload
        assert provider.sent == []
        assert not gate.reservations.is_reserved(USER_ADDRESS)

    @pytest.mark.asyncio
    async def test_successful_claim(self, gate, provider):
        give_issuer_transfer(provider)

        result = await gate.claim(USER_ADDRESS)

        assert isinstance(result, Success)
        assert provider.sent == [(USER_ADDRESS, CLAIM_WEI, Web3.to_wei(30, "gwei"))]
        assert result.payload["transactionHash"] == TX_HASH
        assert result.payload["blockNumber"] == "123"
        assert result.payload["amount"] == "0.01"
        assert result.payload["eligibility"]["alreadyClaimed"] is False

    @pytest.mark.asyncio
    async def test_send_failure_releases_reservation(self, gate, provider):
        give_issuer_transfer(provider)
        provider.failures["send_transaction"] = TransactionError("Failed to send transaction", details="nonce too low")

        result = await gate.claim(USER_ADDRESS)

        assert result.reason == Reason.TRANSACTION_FAILED
        assert result.details == {"details": "nonce too low"}
        assert not gate.reservations.is_reserved(USER_ADDRESS)

    @pytest.mark.asyncio
    async def test_receipt_timeout_keeps_reservation(self, gate, provider):
        give_issuer_transfer(provider)
        provider.failures["wait_for_receipt"] = TransactionError("not mined", transactionHash=TX_HASH)

        result = await gate.claim(USER_ADDRESS)

        assert result.reason == Reason.TRANSACTION_FAILED
        assert result.details["transactionHash"] == TX_HASH
        assert gate.reservations.is_reserved(USER_ADDRESS)


class TestClaimReservations:
    """Concurrent claims for one address inside a process."""

    @pytest.mark.asyncio
    async def test_reserved_address_is_rejected(self, gate, provider):
        give_issuer_transfer(provider)
        await gate.reservations.reserve(USER_ADDRESS)

        result = await gate.claim(USER_ADDRESS)

        assert result.reason == Reason.CLAIM_IN_PROGRESS
        assert result.status_code == 409
        assert provider.queries == []

    @pytest.mark.asyncio
    async def test_dry_run_ignores_reservation(self, gate, provider):
        give_issuer_transfer(provider)
        await gate.reservations.reserve(USER_ADDRESS)

        result = await gate.claim(USER_ADDRESS, dry_run=True)

        assert isinstance(result, Success)

    @pytest.mark.asyncio
    async def test_unexpected_error_releases_reservation(self, gate, provider):
        give_issuer_transfer(provider)
        provider.failures["get_balance"] = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await gate.claim(USER_ADDRESS)

        assert not gate.reservations.is_reserved(USER_ADDRESS)

        del provider.failures["get_balance"]
        result = await gate.claim(USER_ADDRESS)

        assert isinstance(result, Success)

    @pytest.mark.asyncio
    async def test_successful_claim_keeps_reservation(self, gate, provider):
        give_issuer_transfer(provider)

        await gate.claim(USER_ADDRESS)

        assert gate.reservations.is_reserved(USER_ADDRESS)

    @pytest.mark.asyncio
    async def test_reservation_expires(self):
        now = [1000.0]
        reservations = ClaimReservations(ttl_seconds=300, clock=lambda: now[0])

        assert await reservations.reserve(USER_ADDRESS) is True
        assert await reservations.reserve(USER_ADDRESS) is False

        now[0] += 301
        assert not reservations.is_reserved(USER_ADDRESS)
        assert await reservations.reserve(USER_ADDRESS) is True
