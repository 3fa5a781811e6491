"""Generic submit-and-await primitive for contract calls."""

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable

from .abi import ATTRIBUTION_CONSUMER
from .calldata import encode_call
from .errors import (
    NotConnectedError,
    OperationCancelled,
    QuizeloError,
    SignatureDeclinedError,
    SubmissionError,
    TransactionFailedError,
    WrongNetworkError,
)
from .fees import resolve_fee_currency

logger = logging.getLogger(__name__)


class OperationStatus(enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class PendingOperation:
    to: str
    abi: list
    function_name: str
    args: tuple = ()
    value: int = 0
    fee_token: str | None = None
    status: OperationStatus = OperationStatus.PENDING
    tx_hash: str | None = None
    receipt: dict | None = field(default=None, repr=False)


@dataclass
class TxResult:
    ok: bool
    tx_hash: str | None = None
    receipt: dict | None = field(default=None, repr=False)
    error: QuizeloError | None = None

    @property
    def declined(self) -> bool:
        return isinstance(self.error, SignatureDeclinedError)


class CancelToken:
    """Cooperative cancel flag, honoured only until a transaction is sent."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled()


def _checkpoint(cancel: CancelToken | None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()


class TransactionExecutor:
    def __init__(self, wallet, required_chain_id: int,
                 consumer: str = ATTRIBUTION_CONSUMER,
                 reporter=None, constrained_host: bool = False):
        self.wallet = wallet
        self.required_chain_id = required_chain_id
        self.consumer = consumer
        self.reporter = reporter
        self.constrained_host = constrained_host

    async def ensure_network(self) -> None:
        """Make at most one switch request; raise WrongNetworkError if still off."""
        try:
            current = await self.wallet.chain_id()
        except Exception as e:
            raise WrongNetworkError("Could not determine the wallet network") from e
        if current == self.required_chain_id:
            return

        logger.info("Switching network %s -> %s", current, self.required_chain_id)
        try:
            await self.wallet.switch_chain(self.required_chain_id)
            current = await self.wallet.chain_id()
        except Exception as e:
            logger.warning("Network switch failed: %s", e)
            raise WrongNetworkError() from e
        if current != self.required_chain_id:
            raise WrongNetworkError()

    async def execute(self, operation: PendingOperation,
                      cancel: CancelToken | None = None,
                      on_submitted: Callable[[str], None] | None = None) -> TxResult:
        name = operation.function_name
        try:
            if not self.wallet.is_connected:
                raise NotConnectedError("Wallet not connected")
            await self.ensure_network()

            _checkpoint(cancel)
            data = encode_call(
                operation.abi, name, operation.args,
                caller=self.wallet.address, consumer=self.consumer,
            )
            fee_currency = resolve_fee_currency(operation.fee_token, self.constrained_host)

            _checkpoint(cancel)
            tx_hash = await self.wallet.send_transaction(
                operation.to, data, value=operation.value, fee_currency=fee_currency,
            )
            if not tx_hash:
                raise SubmissionError("Transaction failed to send")
            operation.tx_hash = tx_hash
            operation.status = OperationStatus.SUBMITTED
            logger.info("%s submitted: %s", name, tx_hash)
            if on_submitted is not None:
                try:
                    on_submitted(tx_hash)
                except Exception:
                    logger.exception("on_submitted callback failed for %s", tx_hash)

            receipt = await self.wallet.wait_for_receipt(tx_hash)
            if receipt["status"] != 1:
                raise TransactionFailedError(tx_hash)
        except QuizeloError as e:
            operation.status = OperationStatus.FAILED
            logger.error("Error in %s: %s", name, e)
            return TxResult(ok=False, tx_hash=operation.tx_hash, error=e)

        operation.receipt = receipt
        operation.status = OperationStatus.CONFIRMED
        logger.info("%s confirmed in block %s", name, receipt.get("blockNumber"))
        await self._report_attribution(tx_hash)
        return TxResult(ok=True, tx_hash=tx_hash, receipt=receipt)

    async def _report_attribution(self, tx_hash: str) -> None:
        if self.reporter is None:
            return
        try:
            chain_id = await self.wallet.chain_id()
            await self.reporter.report(tx_hash, chain_id)
            logger.info("Attribution submitted for %s", tx_hash)
        except Exception as e:
            # best effort: a confirmed transaction stays confirmed
            logger.error("Attribution submission failed for %s: %s", tx_hash, e)
