"""Recover the session identifier from a startQuiz receipt."""

import logging

from .abi import ZERO_BYTES32

logger = logging.getLogger(__name__)


def _to_hex(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).hex()
    else:
        text = str(value)
    text = text.lower()
    return text if text.startswith("0x") else "0x" + text


def decode_session_id(receipt, ledger_address: str) -> str | None:
    """First non-zero topics[1] of a log emitted by the ledger itself.

    QuizStarted indexes the session id as its first topic after the event
    signature. Returns None when no such log exists.
    """
    if not receipt:
        return None
    ledger = ledger_address.lower()
    for log in receipt.get("logs") or []:
        topics = log.get("topics") or []
        if len(topics) < 2:
            continue
        if str(log.get("address", "")).lower() != ledger:
            continue
        session_id = _to_hex(topics[1])
        if session_id != ZERO_BYTES32:
            logger.debug("Extracted session id %s from receipt", session_id)
            return session_id

    logger.warning("No session id found in receipt %s", _to_hex(receipt.get("transactionHash", b"")))
    return None
