class WhitelistToolError(Exception):
    """Base class for every error raised by the tooling."""


class StorageReadError(WhitelistToolError):
    """The whitelist store could not be read or decoded."""


class StorageWriteError(WhitelistToolError):
    """The whitelist store could not be written. The mutation did not happen."""


class ProofNotFoundError(WhitelistToolError):
    """A proof was requested for a leaf that is not in the tree."""


class InsufficientFundsError(WhitelistToolError):
    def __init__(self, total_cost: int, available_balance: int) -> None:
        self.total_cost = total_cost
        self.available_balance = available_balance
        super().__init__(
            f"Not enough ETH on the funding account: "
            f"need {total_cost} wei, have {available_balance} wei"
        )


class TransferFailedError(WhitelistToolError):
    def __init__(self, address: str, value: int, reason: str) -> None:
        self.address = address
        self.value = value
        self.reason = reason
        super().__init__(f"Transfer of {value} wei to {address} failed: {reason}")
