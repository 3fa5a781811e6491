"""Typed read access to the Quizelo contract and payment tokens."""

import logging
from dataclasses import dataclass

from web3 import Web3

from . import abi as contract_abi
from .errors import LedgerReadError

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 18


def session_id_bytes(session_id: str) -> bytes:
    raw = session_id[2:] if session_id.startswith("0x") else session_id
    data = bytes.fromhex(raw)
    if len(data) != 32:
        raise ValueError(f"Session id must be 32 bytes, got {len(data)}")
    return data


@dataclass(frozen=True)
class QuizSession:
    session_id: str
    owner: str
    token: str
    start_time: int
    expiry_time: int
    active: bool
    claimed: bool
    score: int
    reward: int
    time_remaining: int

    @classmethod
    def from_tuple(cls, session_id: str, data) -> "QuizSession":
        owner, token, start, expiry, active, claimed, score, reward, remaining = data
        return cls(session_id, owner, token, int(start), int(expiry), bool(active),
                   bool(claimed), int(score), int(reward), int(remaining))

    def seconds_left(self, now: float) -> int:
        return max(0, self.expiry_time - int(now))

    def claim_rejection(self, caller: str, now: float) -> str | None:
        """Why ``caller`` cannot claim this session at ``now``, or None."""
        if not self.active:
            return "This quiz session is no longer active"
        if self.claimed:
            return "This quiz has already been claimed"
        if self.owner.lower() != caller.lower():
            return "This quiz session belongs to a different user"
        if self.expiry_time <= now:
            return "This quiz session has expired"
        return None

    def is_claimable_by(self, caller: str, now: float) -> bool:
        return self.claim_rejection(caller, now) is None


@dataclass(frozen=True)
class UserInfo:
    daily_count: int
    last_quiz_time: int
    next_quiz_time: int
    won_today: bool
    can_quiz: bool

    @classmethod
    def from_tuple(cls, data) -> "UserInfo":
        daily, last, nxt, won, can = data
        return cls(int(daily), int(last), int(nxt), bool(won), bool(can))

    def seconds_until_next_quiz(self, now: float) -> int:
        return max(0, self.next_quiz_time - int(now))


@dataclass(frozen=True)
class ContractStats:
    balance: int
    active_quiz_count: int
    min_balance: int
    operational: bool
    total_quizzes: int
    total_rewards: int
    total_fees: int

    @classmethod
    def from_tuple(cls, data) -> "ContractStats":
        balance, active, min_balance, operational, quizzes, rewards, fees = data
        return cls(int(balance), int(active), int(min_balance), bool(operational),
                   int(quizzes), int(rewards), int(fees))


@dataclass(frozen=True)
class UserStats:
    total_quizzes: int
    total_earnings: int
    best_score: int
    average_score: int
    current_streak: int
    longest_streak: int
    total_wins: int
    last_activity: int

    @classmethod
    def from_tuple(cls, data) -> "UserStats":
        return cls(*(int(v) for v in data))


class QuizeloLedger:
    """Contract reads over ``w3``, or over ``wallet.w3`` when a wallet is given.

    Following the wallet keeps reads on the chain transactions go to after the
    wallet reconnects during a network switch.
    """

    def __init__(self, w3, address: str, wallet=None):
        self._w3 = w3
        self.wallet = wallet
        self.address = Web3.to_checksum_address(address)
        self._contract = None
        self._contract_w3 = None

    @property
    def w3(self):
        if self.wallet is not None:
            return self.wallet.w3
        return self._w3

    @property
    def contract(self):
        w3 = self.w3
        if self._contract is None or self._contract_w3 is not w3:
            self._contract = w3.eth.contract(address=self.address, abi=contract_abi.QUIZELO_ABI)
            self._contract_w3 = w3
        return self._contract

    def token(self, token: str):
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(token),
            abi=contract_abi.ERC20_ABI,
        )

    async def _call(self, label: str, fn):
        try:
            return await fn.call()
        except Exception as e:
            raise LedgerReadError(f"Failed to read {label}: {e}") from e

    async def quiz_fee(self) -> int:
        return await self._call("QUIZ_FEE", self.contract.functions.QUIZ_FEE())

    async def get_quiz_session(self, session_id: str) -> QuizSession:
        try:
            key = session_id_bytes(session_id)
        except ValueError as e:
            raise LedgerReadError(str(e)) from e
        data = await self._call("quiz session", self.contract.functions.getQuizSession(key))
        return QuizSession.from_tuple(session_id, data)

    async def get_user_info(self, user: str) -> UserInfo:
        data = await self._call(
            "user info",
            self.contract.functions.getUserInfo(Web3.to_checksum_address(user)),
        )
        return UserInfo.from_tuple(data)

    async def get_contract_stats(self, token: str) -> ContractStats:
        data = await self._call(
            "contract stats",
            self.contract.functions.getContractStats(Web3.to_checksum_address(token)),
        )
        return ContractStats.from_tuple(data)

    async def get_user_stats(self, user: str) -> UserStats:
        data = await self._call(
            "user stats",
            self.contract.functions.getUserStats(Web3.to_checksum_address(user)),
        )
        return UserStats.from_tuple(data)

    async def get_active_session_ids(self) -> list[str]:
        ids = await self._call("active quiz takers", self.contract.functions.getCurrentQuizTakers())
        return [Web3.to_hex(i) for i in ids]

    async def balance_of(self, token: str, owner: str) -> int:
        return await self._call(
            "token balance",
            self.token(token).functions.balanceOf(Web3.to_checksum_address(owner)),
        )

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        return await self._call(
            "token allowance",
            self.token(token).functions.allowance(
                Web3.to_checksum_address(owner), Web3.to_checksum_address(spender),
            ),
        )

    async def decimals(self, token: str) -> int:
        try:
            return await self._call("token decimals", self.token(token).functions.decimals())
        except LedgerReadError as e:
            logger.warning("%s; assuming %d", e, DEFAULT_DECIMALS)
            return DEFAULT_DECIMALS
