"""
Tests for quizelo/session.py

Start and claim flows against a fake wallet and ledger.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from eth_abi import decode

from quizelo.abi import ALFAJORES_CHAIN_ID, CELO_CHAIN_ID
from quizelo.calldata import split_attribution
from quizelo.errors import (
    LedgerReadError,
    SessionStateError,
    SignatureDeclinedError,
    SubmissionError,
    WrongNetworkError,
)
from quizelo.executor import TransactionExecutor
from quizelo.session import QuizSessionOrchestrator, StartPhase, StatusChannel
from quizelo.state import LedgerStateCache
from quizelo.wallet import Web3Wallet

from conftest import (
    APPROVE_SELECTOR,
    CLAIM_SELECTOR,
    NOW,
    OTHER_USER,
    SESSION_ID,
    START_SELECTOR,
    TOKEN,
    TX_HASH,
    FakeWallet,
    make_session,
    quiz_started_log,
)

BET = 5 * 10**16


class DroppedReceiptWallet(FakeWallet):
    """Sends like FakeWallet but waits through Web3Wallet over a dead connection."""

    async def wait_for_receipt(self, tx_hash):
        self.calls.append("receipt")
        w3 = Mock()
        w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=ConnectionError("rpc dropped"))
        return await Web3Wallet(w3, address=self.address).wait_for_receipt(tx_hash)


def make_orchestrator(wallet, ledger) -> QuizSessionOrchestrator:
    executor = TransactionExecutor(wallet, CELO_CHAIN_ID)
    state = LedgerStateCache(ledger, user=wallet.address, token=TOKEN)
    return QuizSessionOrchestrator(executor, ledger, state=state, clock=lambda: NOW)


@pytest.fixture
def started_wallet():
    return FakeWallet(logs=[quiz_started_log()])


# ============================================================================
# START
# ============================================================================

class TestStartQuiz:

    @pytest.mark.asyncio
    async def test_approves_once_then_starts(self, started_wallet, ledger):
        orch = make_orchestrator(started_wallet, ledger)
        await orch.load_constants()
        events = []

        result = await orch.start_quiz(
            TOKEN, BET,
            on_approval_needed=lambda: events.append("needed"),
            on_approval_complete=lambda h: events.append(("complete", h)),
        )

        assert result.success
        assert result.session_id == SESSION_ID
        assert result.approval_tx_hash == TX_HASH
        assert events == ["needed", ("complete", TX_HASH)]
        assert [tx.selector for tx in started_wallet.sent] == [APPROVE_SELECTOR, START_SELECTOR]

        call, _, _ = split_attribution(started_wallet.sent[0].data)
        _, approved = decode(["address", "uint256"], call[4:])
        assert approved >= BET
        assert orch.phase is StartPhase.STARTED

    @pytest.mark.asyncio
    async def test_no_approval_when_allowance_covers_bet(self, started_wallet, ledger):
        ledger.allowance_value = BET
        orch = make_orchestrator(started_wallet, ledger)
        await orch.load_constants()

        result = await orch.start_quiz(TOKEN, BET)

        assert result.success
        assert result.approval_tx_hash is None
        assert [tx.selector for tx in started_wallet.sent] == [START_SELECTOR]

    @pytest.mark.asyncio
    async def test_start_arguments(self, started_wallet, ledger):
        ledger.allowance_value = BET
        orch = make_orchestrator(started_wallet, ledger)
        await orch.load_constants()
        await orch.start_quiz(TOKEN, BET)

        call, _, _ = split_attribution(started_wallet.sent[0].data)
        token, amount = decode(["address", "uint256"], call[4:])
        assert token.lower() == TOKEN.lower()
        assert amount == BET

    @pytest.mark.asyncio
    async def test_identifier_missing_is_still_success(self, wallet, ledger):
        ledger.allowance_value = BET
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()

        result = await orch.start_quiz(TOKEN, BET)

        assert result.success
        assert result.identifier_missing
        assert result.session_id is None

    @pytest.mark.asyncio
    async def test_refreshes_views_after_start(self, started_wallet, ledger):
        ledger.allowance_value = BET
        orch = make_orchestrator(started_wallet, ledger)
        await orch.load_constants()
        ledger.reads.clear()

        await orch.start_quiz(TOKEN, BET)

        for view in ("user_info", "balance", "active_sessions"):
            assert view in ledger.reads

    @pytest.mark.asyncio
    async def test_fee_not_loaded(self, wallet, ledger):
        orch = make_orchestrator(wallet, ledger)
        result = await orch.start_quiz(TOKEN, BET)
        assert not result.success
        assert result.message == "Quiz fee not loaded yet"
        assert wallet.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token,amount,message", [
        (None, BET, "Please select a payment token"),
        ("0x1234", BET, "Invalid token address"),
        (TOKEN, 0, "Bet amount must be greater than zero"),
    ])
    async def test_local_validation(self, wallet, ledger, token, amount, message):
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()
        result = await orch.start_quiz(token, amount)
        assert message in result.message
        assert wallet.calls == []

    @pytest.mark.asyncio
    async def test_not_connected(self, ledger):
        wallet = FakeWallet(address=None)
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()
        result = await orch.start_quiz(TOKEN, BET)
        assert result.message == "Please connect your wallet first"

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, wallet, ledger):
        ledger.balance = BET - 1
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()
        result = await orch.start_quiz(TOKEN, BET)
        assert result.message == "Insufficient token balance"
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_balance_read_failure_does_not_block(self, started_wallet, ledger):
        ledger.failing.add("balance")
        ledger.allowance_value = BET
        orch = make_orchestrator(started_wallet, ledger)
        await orch.load_constants()
        result = await orch.start_quiz(TOKEN, BET)
        assert result.success

    @pytest.mark.asyncio
    async def test_single_network_switch(self, ledger):
        wallet = FakeWallet(chain=ALFAJORES_CHAIN_ID, logs=[quiz_started_log()])
        ledger.allowance_value = BET
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()
        result = await orch.start_quiz(TOKEN, BET)
        assert result.success
        assert wallet.switches == 1

    @pytest.mark.asyncio
    async def test_wrong_network(self, ledger):
        wallet = FakeWallet(chain=ALFAJORES_CHAIN_ID, switch_error=RuntimeError("no"))
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()
        result = await orch.start_quiz(TOKEN, BET)
        assert isinstance(result.error, WrongNetworkError)
        assert "allowance" not in ledger.reads
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_approval_declined(self, declined_wallet, ledger):
        orch = make_orchestrator(declined_wallet, ledger)
        await orch.load_constants()
        completed = []

        result = await orch.start_quiz(TOKEN, BET, on_approval_complete=completed.append)

        assert not result.success
        assert isinstance(result.error, SignatureDeclinedError)
        assert result.message == "Token approval was rejected in the wallet"
        assert completed == []
        assert orch.phase is StartPhase.FAILED
        assert orch.status.error == result.message

    @pytest.mark.asyncio
    async def test_start_reverted(self, ledger):
        wallet = FakeWallet(status=0)
        ledger.allowance_value = BET
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()
        result = await orch.start_quiz(TOKEN, BET)
        assert result.message.startswith("Failed to start quiz: ")

    @pytest.mark.asyncio
    async def test_retry_after_failed_start_reuses_approval(self, ledger):
        wallet = FakeWallet(statuses=[1, 0], logs=[quiz_started_log()], ledger=ledger)
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()

        first = await orch.start_quiz(TOKEN, BET)

        assert not first.success
        assert first.approval_tx_hash == TX_HASH
        assert [tx.selector for tx in wallet.sent] == [APPROVE_SELECTOR, START_SELECTOR]
        assert ledger.allowance_value == BET

        wallet.sent.clear()
        second = await orch.start_quiz(TOKEN, BET)

        assert second.success
        assert second.approval_tx_hash is None
        assert [tx.selector for tx in wallet.sent] == [START_SELECTOR]

    @pytest.mark.asyncio
    async def test_lost_connection_while_confirming(self, ledger):
        wallet = DroppedReceiptWallet()
        ledger.allowance_value = BET
        orch = make_orchestrator(wallet, ledger)
        await orch.load_constants()

        result = await orch.start_quiz(TOKEN, BET)

        assert not result.success
        assert isinstance(result.error, SubmissionError)
        assert "rpc dropped" in result.message
        assert result.message.startswith("Failed to start quiz: ")
        assert orch.phase is StartPhase.FAILED
        assert orch.status.error == result.message


# ============================================================================
# CLAIM
# ============================================================================

class TestClaimReward:

    @pytest.mark.asyncio
    async def test_claims(self, wallet, ledger):
        ledger.sessions[SESSION_ID] = make_session()
        orch = make_orchestrator(wallet, ledger)

        result = await orch.claim_reward(SESSION_ID, 82)

        assert result.success
        assert result.message == "Quiz completed! Score: 82%"
        assert [tx.selector for tx in wallet.sent] == [CLAIM_SELECTOR]
        call, _, _ = split_attribution(wallet.sent[0].data)
        session, score = decode(["bytes32", "uint256"], call[4:])
        assert "0x" + session.hex() == SESSION_ID
        assert score == 82
        for view in ("user_info", "contract_stats", "active_sessions", "user_stats"):
            assert view in ledger.reads

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides,message", [
        ({"active": False}, "This quiz session is no longer active"),
        ({"claimed": True}, "This quiz has already been claimed"),
        ({"owner": OTHER_USER}, "This quiz session belongs to a different user"),
        ({"expiry_time": NOW}, "This quiz session has expired"),
        ({"active": False, "claimed": True, "owner": OTHER_USER}, "This quiz session is no longer active"),
        ({"claimed": True, "owner": OTHER_USER}, "This quiz has already been claimed"),
    ])
    async def test_rejected_without_submission(self, wallet, ledger, overrides, message):
        ledger.sessions[SESSION_ID] = make_session(**overrides)
        orch = make_orchestrator(wallet, ledger)

        result = await orch.claim_reward(SESSION_ID, 90)

        assert not result.success
        assert result.message == message
        assert isinstance(result.error, SessionStateError)
        assert wallet.sent == []
        assert orch.status.error == message

    @pytest.mark.asyncio
    async def test_read_failure(self, wallet, ledger):
        orch = make_orchestrator(wallet, ledger)
        result = await orch.claim_reward(SESSION_ID, 90)
        assert result.message == "Failed to validate quiz session"
        assert isinstance(result.error, LedgerReadError)
        assert wallet.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id,score,message", [
        ("", 80, "Invalid session ID"),
        (SESSION_ID, 101, "Score must be between 0 and 100"),
        (SESSION_ID, -5, "Score must be between 0 and 100"),
    ])
    async def test_local_validation(self, wallet, ledger, session_id, score, message):
        orch = make_orchestrator(wallet, ledger)
        result = await orch.claim_reward(session_id, score)
        assert result.message == message
        assert wallet.calls == []
        assert ledger.reads == []

    @pytest.mark.asyncio
    async def test_claim_reverted(self, ledger):
        wallet = FakeWallet(status=0)
        ledger.sessions[SESSION_ID] = make_session()
        orch = make_orchestrator(wallet, ledger)
        result = await orch.claim_reward(SESSION_ID, 75)
        assert result.message.startswith("Failed to claim reward: ")


# ============================================================================
# HOUSEKEEPING
# ============================================================================

class TestResumeAndCleanup:

    @pytest.mark.asyncio
    async def test_resumable(self, wallet, ledger):
        ledger.active = [SESSION_ID]
        ledger.sessions[SESSION_ID] = make_session()
        orch = make_orchestrator(wallet, ledger)
        assert await orch.find_resumable_session(SESSION_ID) == SESSION_ID

    @pytest.mark.asyncio
    async def test_not_in_active_list(self, wallet, ledger):
        ledger.sessions[SESSION_ID] = make_session()
        orch = make_orchestrator(wallet, ledger)
        assert await orch.find_resumable_session(SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_expired_is_not_resumable(self, wallet, ledger):
        ledger.active = [SESSION_ID]
        ledger.sessions[SESSION_ID] = make_session(expiry_time=NOW - 1)
        orch = make_orchestrator(wallet, ledger)
        assert await orch.find_resumable_session(SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_nothing_stored(self, wallet, ledger):
        orch = make_orchestrator(wallet, ledger)
        assert await orch.find_resumable_session(None) is None
        assert ledger.reads == []

    @pytest.mark.asyncio
    async def test_cleanup(self, wallet, ledger):
        orch = make_orchestrator(wallet, ledger)
        result = await orch.cleanup_expired_quiz(SESSION_ID)
        assert result.success
        assert len(wallet.sent) == 1
        assert "active_sessions" in ledger.reads


# ============================================================================
# STATUS CHANNEL
# ============================================================================

class TestStatusChannel:

    @pytest.mark.asyncio
    async def test_message_clears_after_ttl(self):
        status = StatusChannel(ttl=0.01)
        status.show_error("boom")
        assert status.error == "boom"
        await asyncio.sleep(0.05)
        assert status.error == ""

    @pytest.mark.asyncio
    async def test_newer_message_survives_older_timer(self):
        status = StatusChannel(ttl=0.05)
        status.show_success("first")
        await asyncio.sleep(0.03)
        status.show_success("second")
        await asyncio.sleep(0.03)
        assert status.success == "second"

    def test_without_a_loop_messages_stay(self):
        status = StatusChannel(ttl=0.01)
        seen = []
        status.listeners.append(lambda kind, message: seen.append((kind, message)))
        status.show_error("no loop")
        assert status.error == "no loop"
        assert seen == [("error", "no loop")]
        status.reset()
        assert status.error == ""
