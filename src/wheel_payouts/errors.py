from __future__ import annotations

from typing import Optional


class RewardEngineError(Exception):
    """Base class for everything the engine raises on purpose."""


class ValidationError(RewardEngineError):
    pass


class InvalidWeightDistribution(ValidationError):
    pass


class InvalidWalletAddress(ValidationError):
    def __init__(self, wallet: str) -> None:
        super().__init__(f"Not a valid EVM address: {wallet!r}")
        self.wallet = wallet


class AllowanceTooLow(ValidationError):
    def __init__(self, allowance: int, required: int) -> None:
        super().__init__(f"Allowance {allowance} is below the required {required}")
        self.allowance = allowance
        self.required = required


class ExternalRejection(RewardEngineError):
    """A collaborator answered with a 4xx (duplicate wallet, banned user, ...)."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        error: str = "",
        details: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.error = error or message
        self.details = details

    @property
    def reason(self) -> str:
        if self.details:
            return f"{self.error}: {self.details}"
        return self.error


class RewardIneligible(ExternalRejection):
    """The channel cannot own channel-point rewards (not affiliate/partner)."""


class TransportError(RewardEngineError):
    pass


class UserCancellation(RewardEngineError):
    pass


class NetworkMismatch(RewardEngineError):
    def __init__(self, current: Optional[int], required: int) -> None:
        super().__init__(f"Wallet is on chain {current}, settlement requires chain {required}")
        self.current = current
        self.required = required


class RpcError(RewardEngineError):
    def __init__(self, code: Optional[int], message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message


class SettlementBusy(RewardEngineError):
    pass


class EngineBusy(RewardEngineError):
    pass
