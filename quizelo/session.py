"""Start and claim sagas for paid quiz sessions."""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from web3 import Web3

from .abi import QUIZELO_ABI
from .allowance import AllowanceManager, ApprovalStatus
from .errors import (
    LedgerReadError,
    NotConnectedError,
    PreconditionError,
    QuizeloError,
    SessionStateError,
    SignatureDeclinedError,
)
from .executor import CancelToken, PendingOperation, TransactionExecutor
from .receipts import decode_session_id
from .state import LedgerStateCache, View

logger = logging.getLogger(__name__)

MESSAGE_TTL = 5.0

START_REFRESH = (View.USER_INFO, View.BALANCE, View.ACTIVE_SESSIONS)
CLAIM_REFRESH = (View.USER_INFO, View.CONTRACT_STATS, View.ACTIVE_SESSIONS, View.USER_STATS)


class StatusChannel:
    """The single place user-facing messages go.

    Holds the latest error and success message; each clears itself ``ttl``
    seconds after being set (when an event loop is running).
    """

    def __init__(self, ttl: float = MESSAGE_TTL):
        self.ttl = ttl
        self.error = ""
        self.success = ""
        self.tx_hash = ""
        self.listeners: list[Callable[[str, str], None]] = []
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def reset(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self.error = ""
        self.success = ""
        self.tx_hash = ""

    def show_error(self, message: str) -> None:
        self._set("error", message)

    def show_success(self, message: str) -> None:
        self._set("success", message)

    def _set(self, kind: str, message: str) -> None:
        setattr(self, kind, message)
        timer = self._timers.pop(kind, None)
        if timer is not None:
            timer.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and self.ttl:
            self._timers[kind] = loop.call_later(self.ttl, self._clear, kind, message)
        for listener in self.listeners:
            listener(kind, message)

    def _clear(self, kind: str, message: str) -> None:
        self._timers.pop(kind, None)
        if getattr(self, kind) == message:
            setattr(self, kind, "")


class StartPhase(enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    APPROVING = "approving"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    STARTED = "started"
    FAILED = "failed"


@dataclass
class SessionResult:
    success: bool
    tx_hash: str | None = None
    message: str = ""
    error: QuizeloError | None = None


@dataclass
class StartResult(SessionResult):
    session_id: str | None = None
    approval_tx_hash: str | None = None

    @property
    def identifier_missing(self) -> bool:
        """Started on the ledger, but no session id could be read back."""
        return self.success and self.session_id is None


class QuizSessionOrchestrator:
    def __init__(self, executor: TransactionExecutor, ledger,
                 allowances: AllowanceManager | None = None,
                 state: LedgerStateCache | None = None,
                 status: StatusChannel | None = None,
                 clock: Callable[[], float] = time.time):
        self.executor = executor
        self.wallet = executor.wallet
        self.ledger = ledger
        self.allowances = allowances or AllowanceManager(ledger, executor)
        self.state = state or LedgerStateCache(ledger, user=self.wallet.address)
        self.status = status or StatusChannel()
        self.clock = clock
        self.phase = StartPhase.IDLE

    @property
    def address(self) -> str | None:
        return self.wallet.address

    async def load_constants(self) -> None:
        await self.state.refresh(View.QUIZ_FEE)

    # -- start ---------------------------------------------------------------

    def _validate_start(self, token: str | None, amount: int) -> None:
        if not self.wallet.is_connected:
            raise NotConnectedError()
        if self.state.quiz_fee is None:
            raise PreconditionError("Quiz fee not loaded yet")
        if not token:
            raise PreconditionError("Please select a payment token")
        if not Web3.is_address(token):
            raise PreconditionError(f"Invalid token address: {token}")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise PreconditionError("Bet amount must be greater than zero")

    async def _check_balance(self, token: str, amount: int) -> None:
        try:
            balance = await self.ledger.balance_of(token, self.address)
        except LedgerReadError as e:
            logger.warning("Balance check skipped: %s", e)
            return
        if balance < amount:
            raise PreconditionError("Insufficient token balance")

    async def _ensure_allowance(self, token: str, amount: int,
                                on_approval_needed, on_approval_complete,
                                cancel) -> str | None:
        spender = self.ledger.address
        current = await self.allowances.read(token, self.address, spender)
        if current >= amount:
            return None

        self.phase = StartPhase.APPROVING
        logger.info("Allowance %s below bet %s; requesting approval", current, amount)
        if on_approval_needed is not None:
            on_approval_needed()
        outcome = await self.allowances.approve(token, spender, amount, cancel=cancel)
        if outcome.status is ApprovalStatus.DECLINED:
            raise SignatureDeclinedError("Token approval was rejected in the wallet")
        if not outcome.success:
            raise QuizeloError(f"Token approval failed: {outcome.error}")
        if on_approval_complete is not None:
            on_approval_complete(outcome.tx_hash)
        return outcome.tx_hash

    def _start_failed(self, message: str, error: QuizeloError | None,
                      approval_tx_hash: str | None = None) -> StartResult:
        self.phase = StartPhase.FAILED
        self.status.show_error(message)
        return StartResult(success=False, message=message, error=error,
                           approval_tx_hash=approval_tx_hash)

    def _awaiting_confirmation(self, tx_hash: str) -> None:
        self.phase = StartPhase.AWAITING_CONFIRMATION
        self.status.tx_hash = tx_hash

    async def start_quiz(self, token: str, amount: int,
                         on_approval_needed: Callable[[], None] | None = None,
                         on_approval_complete: Callable[[str | None], None] | None = None,
                         cancel: CancelToken | None = None) -> StartResult:
        """Approve if needed, then start a paid session for ``amount`` of ``token``."""
        self.status.reset()
        self.phase = StartPhase.VALIDATING
        approval_tx_hash = None
        try:
            self._validate_start(token, amount)
            await self.executor.ensure_network()
            self.state.set_token(token)
            await self._check_balance(token, amount)
            approval_tx_hash = await self._ensure_allowance(
                token, amount, on_approval_needed, on_approval_complete, cancel,
            )
        except QuizeloError as e:
            return self._start_failed(str(e), e, approval_tx_hash)

        self.phase = StartPhase.SUBMITTING
        result = await self.executor.execute(
            PendingOperation(
                to=self.ledger.address,
                abi=QUIZELO_ABI,
                function_name="startQuiz",
                args=(token, amount),
                fee_token=token,
            ),
            cancel=cancel,
            on_submitted=self._awaiting_confirmation,
        )
        if not result.ok:
            return self._start_failed(f"Failed to start quiz: {result.error}", result.error,
                                      approval_tx_hash)

        self.phase = StartPhase.STARTED
        self.status.tx_hash = result.tx_hash
        session_id = decode_session_id(result.receipt, self.ledger.address)
        if session_id is None:
            message = "Quiz started, but the session id could not be read from the receipt"
        else:
            message = "Quiz started successfully!"
        self.status.show_success(message)
        await self._refresh(*START_REFRESH)
        return StartResult(success=True, tx_hash=result.tx_hash, message=message,
                           session_id=session_id, approval_tx_hash=approval_tx_hash)

    # -- claim ---------------------------------------------------------------

    def _failed(self, message: str, error: QuizeloError | None = None) -> SessionResult:
        self.status.show_error(message)
        return SessionResult(success=False, message=message, error=error)

    async def _checked_session(self, session_id: str):
        try:
            session = await self.ledger.get_quiz_session(session_id)
        except LedgerReadError as e:
            logger.error("Error validating session %s: %s", session_id, e)
            raise LedgerReadError("Failed to validate quiz session") from e
        logger.debug("Validating session before claim: %s", session)
        rejection = session.claim_rejection(self.address, self.clock())
        if rejection:
            raise SessionStateError(rejection)
        return session

    async def claim_reward(self, session_id: str, score: int,
                           cancel: CancelToken | None = None) -> SessionResult:
        """Submit ``score`` for an owned, active, unexpired, unclaimed session."""
        self.status.reset()
        try:
            if not self.wallet.is_connected:
                raise NotConnectedError()
            if not session_id:
                raise PreconditionError("Invalid session ID")
            if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
                raise PreconditionError("Score must be between 0 and 100")
            await self.executor.ensure_network()
            await self._checked_session(session_id)
        except QuizeloError as e:
            return self._failed(str(e), e)

        result = await self.executor.execute(
            PendingOperation(
                to=self.ledger.address,
                abi=QUIZELO_ABI,
                function_name="claimReward",
                args=(session_id, score),
                fee_token=self.state.token,
            ),
            cancel=cancel,
        )
        if not result.ok:
            return self._failed(f"Failed to claim reward: {result.error}", result.error)

        self.status.tx_hash = result.tx_hash
        message = f"Quiz completed! Score: {score}%"
        self.status.show_success(message)
        await self._refresh(*CLAIM_REFRESH)
        return SessionResult(success=True, tx_hash=result.tx_hash, message=message)

    # -- housekeeping --------------------------------------------------------

    async def cleanup_expired_quiz(self, session_id: str) -> SessionResult:
        self.status.reset()
        if not self.wallet.is_connected:
            return self._failed(str(NotConnectedError()), NotConnectedError())
        if not session_id:
            return self._failed("Invalid session ID")

        result = await self.executor.execute(
            PendingOperation(
                to=self.ledger.address,
                abi=QUIZELO_ABI,
                function_name="cleanupExpiredQuiz",
                args=(session_id,),
            ),
        )
        if not result.ok:
            return self._failed(f"Failed to cleanup quiz: {result.error}", result.error)

        message = "Expired quiz cleaned up"
        self.status.show_success(message)
        await self._refresh(View.ACTIVE_SESSIONS)
        return SessionResult(success=True, tx_hash=result.tx_hash, message=message)

    async def find_resumable_session(self, stored_session_id: str | None) -> str | None:
        """The stored session id if it is still active and claimable by us."""
        if not stored_session_id or not self.wallet.is_connected:
            return None
        active = await self.state.get(View.ACTIVE_SESSIONS) or []
        if stored_session_id.lower() not in {s.lower() for s in active}:
            return None
        try:
            session = await self.ledger.get_quiz_session(stored_session_id)
        except LedgerReadError as e:
            logger.warning("Failed to check active session: %s", e)
            return None
        if session.is_claimable_by(self.address, self.clock()):
            return stored_session_id
        return None

    async def _refresh(self, *views: View) -> None:
        self.state.invalidate(*views)
        await self.state.refresh(*views)
