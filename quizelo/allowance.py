"""Token spend-approval: read the current limit, approve when it falls short."""

import enum
import logging
from dataclasses import dataclass

from .abi import ERC20_ABI, MAX_UINT256
from .errors import LedgerReadError, QuizeloError, SignatureDeclinedError
from .executor import PendingOperation

logger = logging.getLogger(__name__)


class ApprovalStatus(enum.Enum):
    APPROVED = "approved"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass
class ApprovalOutcome:
    status: ApprovalStatus
    tx_hash: str | None = None
    error: QuizeloError | None = None

    @property
    def success(self) -> bool:
        return self.status is ApprovalStatus.APPROVED


@dataclass
class AllowanceRecord:
    token: str
    owner: str
    spender: str
    amount: int
    stale: bool = False


def _key(token: str, owner: str, spender: str) -> tuple[str, str, str]:
    return token.lower(), owner.lower(), spender.lower()


class AllowanceManager:
    def __init__(self, ledger, executor):
        self.ledger = ledger
        self.executor = executor
        self._records: dict[tuple[str, str, str], AllowanceRecord] = {}

    async def read(self, token: str, owner: str, spender: str) -> int:
        """Current allowance; 0 if the read fails (it is re-checked on spend)."""
        try:
            amount = await self.ledger.allowance(token, owner, spender)
        except LedgerReadError as e:
            logger.warning("Failed to get token allowance: %s", e)
            return 0
        self._records[_key(token, owner, spender)] = AllowanceRecord(token, owner, spender, amount)
        return amount

    def cached(self, token: str, owner: str, spender: str) -> AllowanceRecord | None:
        record = self._records.get(_key(token, owner, spender))
        if record is None or record.stale:
            return None
        return record

    def _mark_stale(self, token: str, owner: str, spender: str) -> None:
        record = self._records.get(_key(token, owner, spender))
        if record is not None:
            record.stale = True

    async def approve(self, token: str, spender: str, amount: int,
                      unlimited: bool = False, cancel=None) -> ApprovalOutcome:
        value = MAX_UINT256 if unlimited else amount
        owner = self.executor.wallet.address
        if owner:
            self._mark_stale(token, owner, spender)

        logger.info("Approving %s of %s for %s", "unlimited" if unlimited else value, token, spender)
        result = await self.executor.execute(
            PendingOperation(
                to=token,
                abi=ERC20_ABI,
                function_name="approve",
                args=(spender, value),
                fee_token=token,
            ),
            cancel=cancel,
        )
        if result.ok:
            return ApprovalOutcome(ApprovalStatus.APPROVED, tx_hash=result.tx_hash)
        if isinstance(result.error, SignatureDeclinedError):
            return ApprovalOutcome(ApprovalStatus.DECLINED, error=result.error)
        return ApprovalOutcome(ApprovalStatus.FAILED, tx_hash=result.tx_hash, error=result.error)
