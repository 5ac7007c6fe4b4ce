import enum
from typing import Any, Optional


class TradingError(Exception):
    """Base class for every error surfaced to API callers."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TradingError):
    """Malformed or out-of-range input, rejected before any side effect"""
    status_code = 422


class NotFoundError(TradingError):
    status_code = 404


class InsufficientBalance(TradingError):
    status_code = 400


class UpstreamError(TradingError):
    """Price provider or chain RPC unreachable or erroring"""
    status_code = 502


class ConfirmationTimeout(TradingError):
    status_code = 504


class ChainErrorKind(str, enum.Enum):
    insufficient_funds = "insufficient_funds"
    slippage_exceeded = "slippage_exceeded"
    blockhash_not_found = "blockhash_not_found"
    already_processed = "already_processed"
    program_error = "program_error"
    unknown = "unknown"


class ChainExecutionError(TradingError):
    """The chain rejected or failed the submitted transaction."""
    status_code = 400

    def __init__(self, message: str, kind: ChainErrorKind = ChainErrorKind.unknown, raw: Any = None):
        super().__init__(message)
        self.kind = kind
        self.raw = raw


# SPL token program: custom error 1 is InsufficientFunds
TOKEN_INSUFFICIENT_FUNDS = 1
# Jupiter aggregator program: SlippageToleranceExceeded
JUPITER_SLIPPAGE_EXCEEDED = 6001

_NAMED_ERRORS = {
    "InsufficientFundsForFee": ChainErrorKind.insufficient_funds,
    "InsufficientFundsForRent": ChainErrorKind.insufficient_funds,
    "BlockhashNotFound": ChainErrorKind.blockhash_not_found,
    "AlreadyProcessed": ChainErrorKind.already_processed,
}


def decode_chain_error(err: Any) -> ChainErrorKind:
    """Map a Solana ``TransactionError`` JSON value onto a ChainErrorKind.

    The RPC reports errors either as a bare string (``"BlockhashNotFound"``)
    or as a tagged object such as
    ``{"InstructionError": [2, {"Custom": 6001}]}``.
    """
    if err is None:
        return ChainErrorKind.unknown
    if isinstance(err, str):
        return _NAMED_ERRORS.get(err, ChainErrorKind.unknown)
    if isinstance(err, dict):
        if "InsufficientFundsForRent" in err:
            return ChainErrorKind.insufficient_funds
        instruction_error = err.get("InstructionError")
        if isinstance(instruction_error, list) and len(instruction_error) == 2:
            detail = instruction_error[1]
            if isinstance(detail, dict) and "Custom" in detail:
                code = detail["Custom"]
                if code == TOKEN_INSUFFICIENT_FUNDS:
                    return ChainErrorKind.insufficient_funds
                if code == JUPITER_SLIPPAGE_EXCEEDED:
                    return ChainErrorKind.slippage_exceeded
                return ChainErrorKind.program_error
            if detail == "InsufficientFunds":
                return ChainErrorKind.insufficient_funds
            return ChainErrorKind.program_error
    return ChainErrorKind.unknown


def chain_error(err: Any, prefix: str = "Transaction failed on-chain", logs: Optional[list] = None) -> ChainExecutionError:
    kind = decode_chain_error(err)
    message = f"{prefix}: {kind.value}"
    if err is not None:
        message = f"{message} ({err})"
    return ChainExecutionError(message, kind=kind, raw={"err": err, "logs": logs or []})
