"""
Shared fakes for the wallet and ledger.

Nothing here touches a node: FakeWallet records what would have been signed
and sent, FakeLedger serves canned view data.
"""

from dataclasses import dataclass

import pytest
from eth_abi import decode
from web3 import Web3

from quizelo.abi import CELO_CHAIN_ID, CUSD_ADDRESS
from quizelo.calldata import split_attribution
from quizelo.errors import LedgerReadError, SignatureDeclinedError, SubmissionError
from quizelo.ledger import ContractStats, QuizSession, UserInfo, UserStats


USER = Web3.to_checksum_address("0x" + "11" * 20)
OTHER_USER = Web3.to_checksum_address("0x" + "33" * 20)
LEDGER = Web3.to_checksum_address("0x" + "22" * 20)
TOKEN = CUSD_ADDRESS

SESSION_ID = "0x" + "ab" * 32
TX_HASH = "0x" + "cd" * 32
NOW = 1_700_000_000

QUIZ_STARTED_TOPIC = Web3.to_hex(Web3.keccak(text="QuizStarted(bytes32,address,address,uint256)"))

APPROVE_SELECTOR = bytes(Web3.keccak(text="approve(address,uint256)")[:4])
START_SELECTOR = bytes(Web3.keccak(text="startQuiz(address,uint256)")[:4])
CLAIM_SELECTOR = bytes(Web3.keccak(text="claimReward(bytes32,uint256)")[:4])


# ============================================================================
# FAKES
# ============================================================================

@dataclass
class SentTx:
    to: str
    data: bytes
    value: int
    fee_currency: str | None

    @property
    def selector(self) -> bytes:
        call = split_attribution(self.data)
        return (call[0] if call else self.data)[:4]

    @property
    def args_data(self) -> bytes:
        call = split_attribution(self.data)
        return (call[0] if call else self.data)[4:]


def quiz_started_log(session_id: str = SESSION_ID, address: str = LEDGER) -> dict:
    return {
        "address": address,
        "topics": [
            QUIZ_STARTED_TOPIC,
            session_id,
            "0x" + "00" * 12 + USER[2:].lower(),
            "0x" + "00" * 12 + TOKEN[2:].lower(),
        ],
        "data": "0x",
    }


class FakeWallet:
    """Records every call in ``calls`` so tests can assert ordering.

    ``statuses`` are consumed one per receipt before falling back to
    ``status``. With a ``ledger``, a confirmed approve raises its allowance.
    """

    def __init__(self, address: str | None = USER, chain: int = CELO_CHAIN_ID,
                 switch_to: int | None = None, switch_error: Exception | None = None,
                 send_error: Exception | None = None, status: int = 1,
                 logs: list | None = None, return_hash: bool = True,
                 statuses: list[int] | None = None, ledger=None):
        self._address = address
        self.chain = chain
        self.switch_to = switch_to
        self.switch_error = switch_error
        self.send_error = send_error
        self.status = status
        self.logs = logs if logs is not None else []
        self.return_hash = return_hash
        self.statuses = list(statuses or [])
        self.ledger = ledger
        self.calls: list = []
        self.sent: list[SentTx] = []

    @property
    def address(self):
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._address is not None

    async def chain_id(self) -> int:
        self.calls.append("chain_id")
        return self.chain

    async def switch_chain(self, chain_id: int) -> None:
        self.calls.append(("switch", chain_id))
        if self.switch_error is not None:
            raise self.switch_error
        self.chain = self.switch_to if self.switch_to is not None else chain_id

    @property
    def switches(self) -> int:
        return sum(1 for c in self.calls if isinstance(c, tuple) and c[0] == "switch")

    async def send_transaction(self, to, data, value=0, fee_currency=None):
        self.calls.append("send")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(SentTx(to, data, value, fee_currency))
        return TX_HASH if self.return_hash else None

    async def wait_for_receipt(self, tx_hash):
        self.calls.append("receipt")
        status = self.statuses.pop(0) if self.statuses else self.status
        if status == 1 and self.ledger is not None and self.sent[-1].selector == APPROVE_SELECTOR:
            _, amount = decode(["address", "uint256"], self.sent[-1].args_data)
            self.ledger.allowance_value = amount
        return {
            "status": status,
            "blockNumber": 123,
            "transactionHash": tx_hash,
            "logs": list(self.logs),
        }


def make_session(**overrides) -> QuizSession:
    values = dict(
        session_id=SESSION_ID,
        owner=USER,
        token=TOKEN,
        start_time=NOW - 60,
        expiry_time=NOW + 240,
        active=True,
        claimed=False,
        score=0,
        reward=0,
        time_remaining=240,
    )
    values.update(overrides)
    return QuizSession(**values)


class FakeLedger:
    def __init__(self, address: str = LEDGER):
        self.address = address
        self.fee = 10**16
        self.balance = 10**20
        self.allowance_value = 0
        self.sessions: dict[str, QuizSession] = {}
        self.active: list[str] = []
        self.user_info = UserInfo(1, NOW - 3600, NOW, False, True)
        self.contract_stats = ContractStats(10**21, 1, 10**18, True, 42, 10**19, 10**18)
        self.user_stats = UserStats(3, 10**17, 90, 70, 2, 3, 2, NOW)
        self.failing: set[str] = set()
        self.reads: list[str] = []

    def _read(self, name: str):
        self.reads.append(name)
        if name in self.failing:
            raise LedgerReadError(f"Failed to read {name}: boom")

    async def quiz_fee(self):
        self._read("quiz_fee")
        return self.fee

    async def get_quiz_session(self, session_id):
        self._read("quiz_session")
        if session_id not in self.sessions:
            raise LedgerReadError("Failed to read quiz session: execution reverted")
        return self.sessions[session_id]

    async def get_user_info(self, user):
        self._read("user_info")
        return self.user_info

    async def get_contract_stats(self, token):
        self._read("contract_stats")
        return self.contract_stats

    async def get_user_stats(self, user):
        self._read("user_stats")
        return self.user_stats

    async def get_active_session_ids(self):
        self._read("active_sessions")
        return list(self.active)

    async def balance_of(self, token, owner):
        self._read("balance")
        return self.balance

    async def allowance(self, token, owner, spender):
        self._read("allowance")
        return self.allowance_value

    async def decimals(self, token):
        return 18


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def declined_wallet():
    return FakeWallet(send_error=SignatureDeclinedError())


@pytest.fixture
def failing_wallet():
    return FakeWallet(send_error=SubmissionError("Transaction failed to send: nonce too low"))
