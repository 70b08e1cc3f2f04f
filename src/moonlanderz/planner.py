import random
from dataclasses import dataclass
from typing import Dict, Hashable, Optional, Sequence, Tuple

from loguru import logger

from moonlanderz.const import MINT_GAS_LIMIT, MINT_SUPP_GAS_LIMIT, TRANSFER_GAS_LIMIT
from moonlanderz.errors import InsufficientFundsError


@dataclass(frozen=True)
class TxPlan:
    tx_count: int
    last_tx_size: int
    max_per_tx: int

    @property
    def tx_sizes(self) -> Tuple[int, ...]:
        if self.tx_count == 0:
            return ()
        return (self.max_per_tx,) * (self.tx_count - 1) + (self.last_tx_size,)


@dataclass(frozen=True)
class CostEstimate:
    eth_for_mint: int
    eth_for_gas: int

    @property
    def total(self) -> int:
        return self.eth_for_mint + self.eth_for_gas


@dataclass(frozen=True)
class AccountPlan:
    address: str
    mint_count: int
    tx_plan: TxPlan
    eth_for_mint: int
    eth_for_gas: int

    @property
    def tx_count(self) -> int:
        return self.tx_plan.tx_count

    @property
    def value(self) -> int:
        """ETH to send to the account before it starts minting."""
        return self.eth_for_mint + self.eth_for_gas


@dataclass(frozen=True)
class MintPlan:
    accounts: Tuple[AccountPlan, ...]
    gas_price: int
    transfer_gas_limit: int = TRANSFER_GAS_LIMIT
    # price per token the accounts were funded for
    unit_price: int = 0
    presale: bool = False

    def __iter__(self):
        return iter(self.accounts)

    def __len__(self) -> int:
        return len(self.accounts)

    def __getitem__(self, address: str) -> AccountPlan:
        for account in self.accounts:
            if account.address == address:
                return account
        raise KeyError(address)

    @property
    def total_mints(self) -> int:
        return sum(account.mint_count for account in self.accounts)

    @property
    def transfer_fees(self) -> int:
        return self.gas_price * self.transfer_gas_limit * len(self.accounts)

    @property
    def total_cost(self) -> int:
        """Everything the funding account spends: values sent plus transfer fees."""
        return sum(account.value for account in self.accounts) + self.transfer_fees

    def to_dict(self) -> dict:
        return {
            "gasPrice": self.gas_price,
            "transferGasLimit": self.transfer_gas_limit,
            "unitPrice": self.unit_price,
            "presale": self.presale,
            "accounts": [
                {
                    "address": account.address,
                    "mintCount": account.mint_count,
                    "maxPerTx": account.tx_plan.max_per_tx,
                    "ethForMint": account.eth_for_mint,
                    "ethForGas": account.eth_for_gas,
                }
                for account in self.accounts
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MintPlan":
        return cls(
            accounts=tuple(
                AccountPlan(
                    address=item["address"],
                    mint_count=item["mintCount"],
                    tx_plan=compute_tx_plan(item["mintCount"], item["maxPerTx"]),
                    eth_for_mint=item["ethForMint"],
                    eth_for_gas=item["ethForGas"],
                )
                for item in data["accounts"]
            ),
            gas_price=data["gasPrice"],
            transfer_gas_limit=data.get("transferGasLimit", TRANSFER_GAS_LIMIT),
            unit_price=data["unitPrice"],
            presale=data.get("presale", False),
        )


def plan_allocation(
    total_target: int,
    accounts: Sequence[Hashable],
    min_share_ratio: float,
    max_share_ratio: float,
    rng: Optional[random.Random] = None
) -> Dict[Hashable, int]:
    """Split ``total_target`` mints randomly over ``accounts``.

    Every account but the last draws from
    ``[total_target * min_share_ratio, total_target * max_share_ratio)``; a
    draw that would overshoot the target is cut down to what is left. The
    last account takes the exact remainder. Accounts that end up with zero
    mints are left out of the result, which always sums to ``total_target``.
    """

    if not accounts:
        raise ValueError("Account pool is empty")
    if total_target < 0:
        raise ValueError(f"Total target must be non-negative, got {total_target}")
    if not 0 <= min_share_ratio <= max_share_ratio:
        raise ValueError(
            f"Invalid share ratios: min={min_share_ratio}, max={max_share_ratio}"
        )

    rng = rng or random.Random()

    low = int(total_target * min_share_ratio)
    high = int(total_target * max_share_ratio)

    allocation = {}
    running_total = 0

    for index, account in enumerate(accounts):
        if index == len(accounts) - 1:
            count = total_target - running_total
        else:
            count = rng.randrange(low, high) if high > low else low
            count = min(count, total_target - running_total)

        running_total += count

        if count != 0:
            allocation[account] = count

    return allocation


def compute_tx_plan(mint_count: int, max_per_tx: int) -> TxPlan:
    if max_per_tx <= 0:
        raise ValueError(f"Max mints per transaction must be positive, got {max_per_tx}")
    if mint_count < 0:
        raise ValueError(f"Mint count must be non-negative, got {mint_count}")

    full_txs, excess = divmod(mint_count, max_per_tx)
    tx_count = full_txs + (1 if excess else 0)

    if tx_count == 0:
        last_tx_size = 0
    else:
        last_tx_size = excess or max_per_tx

    return TxPlan(tx_count=tx_count, last_tx_size=last_tx_size, max_per_tx=max_per_tx)


def estimate_cost(
    mint_count: int,
    tx_plan: TxPlan,
    unit_mint_price: int,
    gas_price: int,
    per_tx_gas_limit: int = MINT_GAS_LIMIT,
    per_extra_unit_gas: int = MINT_SUPP_GAS_LIMIT
) -> CostEstimate:
    """Wei needed to mint ``mint_count`` tokens following ``tx_plan``.

    Gas is an estimate: each transaction is priced at its base limit plus a
    surcharge per token it mints, at the sampled ``gas_price``. Raise the
    limits to widen the safety margin.
    """

    gas_units = sum(per_tx_gas_limit + per_extra_unit_gas * size for size in tx_plan.tx_sizes)

    return CostEstimate(
        eth_for_mint=unit_mint_price * mint_count,
        eth_for_gas=gas_units * gas_price,
    )


def verify_funding(total_cost: int, available_balance: int) -> None:
    if total_cost > available_balance:
        raise InsufficientFundsError(total_cost, available_balance)


def build_mint_plan(
    total_target: int,
    accounts: Sequence[str],
    max_per_tx: int,
    unit_mint_price: int,
    gas_price: int,
    min_share_ratio: float,
    max_share_ratio: float,
    per_tx_gas_limit: int = MINT_GAS_LIMIT,
    per_extra_unit_gas: int = MINT_SUPP_GAS_LIMIT,
    rng: Optional[random.Random] = None,
    presale: bool = False
) -> MintPlan:
    allocation = plan_allocation(total_target, accounts, min_share_ratio, max_share_ratio, rng)

    account_plans = []
    for address, mint_count in allocation.items():
        tx_plan = compute_tx_plan(mint_count, max_per_tx)
        cost = estimate_cost(
            mint_count, tx_plan, unit_mint_price, gas_price,
            per_tx_gas_limit, per_extra_unit_gas
        )
        account_plans.append(AccountPlan(
            address=address,
            mint_count=mint_count,
            tx_plan=tx_plan,
            eth_for_mint=cost.eth_for_mint,
            eth_for_gas=cost.eth_for_gas,
        ))

    plan = MintPlan(
        accounts=tuple(account_plans),
        gas_price=gas_price,
        unit_price=unit_mint_price,
        presale=presale,
    )

    logger.info(
        f"Planned {plan.total_mints} mints over {len(plan)} of {len(accounts)} accounts, "
        f"total cost {plan.total_cost} wei."
    )

    return plan
