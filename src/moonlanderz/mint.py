import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from eth_account import Account
from hexbytes import HexBytes
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError
from web3.types import TxParams, TxReceipt

from moonlanderz.const import NFT_ABI, TRANSFER_GAS_LIMIT
from moonlanderz.errors import TransferFailedError
from moonlanderz.planner import AccountPlan, MintPlan, verify_funding


def load_contract(abi: list, address: str) -> Contract:
    return Web3().eth.contract(address=Web3.to_checksum_address(address), abi=abi)


def get_web3(rpc_url: str) -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider(rpc_url))


async def time_travel(web3: AsyncWeb3, seconds: int) -> None:
    """Move a local dev chain (hardhat/anvil) forward and mine a block."""

    await web3.provider.make_request("evm_increaseTime", [seconds])
    await web3.provider.make_request("evm_mine", [])


class RpcPool:
    """Round-robin over several RPC endpoints.

    A failing call is retried on the next endpoint. After ``2 * len(rpc_urls)``
    consecutive failures the last error is raised.
    """

    def __init__(
        self,
        rpc_urls: Sequence[str],
        web3_factory: Callable[[str], AsyncWeb3] = get_web3
    ) -> None:
        if not rpc_urls:
            raise ValueError("At least one RPC url is required")

        self.rpc_urls = list(rpc_urls)
        self.web3_factory = web3_factory
        self.max_depth = len(self.rpc_urls) * 2
        self.index = 0
        self.web3 = web3_factory(self.rpc_urls[self.index])

    def rotate(self) -> None:
        self.index = (self.index + 1) % len(self.rpc_urls)
        self.web3 = self.web3_factory(self.rpc_urls[self.index])

    async def call(self, fn: Callable[[AsyncWeb3], Awaitable]):
        depth = 0

        while True:
            try:
                return await fn(self.web3)
            except Exception as e:
                depth += 1
                if depth >= self.max_depth:
                    raise RuntimeError(f"Max depth of {self.max_depth} reached... Exiting") from e

                logger.warning(
                    f"RPC {self.rpc_urls[self.index]} failed with error: {e}. Switching RPC."
                )
                self.rotate()


@dataclass(frozen=True)
class SaleConfig:
    max_mint_tx: int
    sale_price: int
    wl_price: int
    merkle_root: bytes


async def read_sale_config(web3: AsyncWeb3, nft_address: str) -> SaleConfig:
    nft_contract = web3.eth.contract(address=Web3.to_checksum_address(nft_address), abi=NFT_ABI)

    return SaleConfig(
        max_mint_tx=await nft_contract.functions.maxMintTx().call(),
        sale_price=await nft_contract.functions.salePrice().call(),
        wl_price=await nft_contract.functions.wlPrice().call(),
        merkle_root=bytes(await nft_contract.functions.merkleRoot().call()),
    )


class Web3Wrapper:
    def __init__(self, web3: AsyncWeb3, private_key: str) -> None:
        self.web3 = web3
        self.account = Account.from_key(private_key)

    async def estimate_and_send_transaction(
        self,
        tx_params: TxParams,
        gas_buffer: float = 1.05
    ) -> HexBytes:
        """Estimate gas, add a buffer, and send a transaction"""

        for _ in range(3):
            try:
                estimated_gas = await self.web3.eth.estimate_gas(tx_params)
                break
            except ContractLogicError as e:
                logger.error(f"Failed to estimate gas for {tx_params=} with error: {e}")
                continue
        else:
            raise ContractLogicError("Failed to estimate gas for transaction")

        if (
            ("gas" not in tx_params) or
            (tx_params["gas"] is None) or
            (tx_params["gas"] < estimated_gas)
        ):
            tx_params["gas"] = int(estimated_gas * gas_buffer)

        signed_tx = self.account.sign_transaction(tx_params)

        return await self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)

    async def base_tx_params(self) -> TxParams:
        return {
            "chainId": await self.web3.eth.chain_id,
            "nonce": await self.web3.eth.get_transaction_count(self.account.address, "pending"),
            "from": self.account.address,
        }

    async def wait_for(self, tx_hash: HexBytes, timeout: float = 120) -> TxReceipt:
        return await self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

    @property
    async def eip_1559_gas(self) -> dict:
        base_fee = await self.web3.eth.gas_price

        max_priority_fee = await self.web3.eth.max_priority_fee

        return {
            "maxFeePerGas": max_priority_fee + base_fee * 2,
            "maxPriorityFeePerGas": max_priority_fee
        }

    @property
    async def gas_price(self) -> int:
        return await self.web3.eth.gas_price

    @property
    async def balance(self) -> int:
        return await self.web3.eth.get_balance(self.account.address)


@dataclass
class DispatchReport:
    receipts: Dict[str, TxReceipt] = field(default_factory=dict)
    failures: List[TransferFailedError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class Funder(Web3Wrapper):
    async def transfer(self, to: str, value: int, gas_price: Optional[int] = None) -> HexBytes:
        if gas_price is None:
            fees = await self.eip_1559_gas
        else:
            fees = {"gasPrice": gas_price}

        return await self.estimate_and_send_transaction({
            **(await self.base_tx_params()),
            "to": Web3.to_checksum_address(to),
            "value": value,
            "gas": TRANSFER_GAS_LIMIT,
            **fees
        })

    async def dispatch_funding(
        self,
        plan: MintPlan,
        should_continue: Optional[Callable[[], bool]] = None
    ) -> DispatchReport:
        """Send each planned account its ETH, one confirmed transfer at a time.

        The whole plan is checked against the funding balance first and
        nothing is sent if it does not fit. After that a failed transfer is
        logged and collected in the report, the remaining accounts are still
        funded.
        """

        verify_funding(plan.total_cost, await self.balance)

        report = DispatchReport()

        for account_plan in plan:
            if should_continue is not None and not should_continue():
                logger.warning(f"[{self.account.address}] Dispatch halted before {account_plan.address}.")
                break

            value = account_plan.value

            try:
                tx_hash = await self.transfer(account_plan.address, value, plan.gas_price)
                receipt = await self.wait_for(tx_hash)
            except Exception as e:
                error = TransferFailedError(account_plan.address, value, str(e))
                logger.error(f"[{self.account.address}] {error}")
                report.failures.append(error)
                continue

            if receipt["status"] == 1:
                logger.success(
                    f"[{self.account.address}] Successfully transferred "
                    f"{Web3.from_wei(value, 'ether')} ETH to {account_plan.address}"
                )
                report.receipts[account_plan.address] = receipt
            else:
                error = TransferFailedError(account_plan.address, value, "transaction reverted")
                logger.error(f"[{self.account.address}] {error}")
                report.failures.append(error)

        if report.failures:
            logger.error(
                f"[{self.account.address}] {len(report.failures)} of {len(plan)} transfers failed."
            )

        return report


class NFTOwner(Web3Wrapper):
    async def set_merkle_root(self, nft_contract: Contract, root: bytes) -> HexBytes:
        data = nft_contract.functions.setMerkleRoot(bytes(root))._encode_transaction_data()

        return await self.estimate_and_send_transaction({
            **(await self.base_tx_params()),
            "to": nft_contract.address,
            "data": data,
            "value": 0,
            **(await self.eip_1559_gas)
        })


class NFTMinter(Web3Wrapper):
    def sale_mint_data(self, nft_contract: Contract, amount: int) -> str:
        return nft_contract.functions.saleMint(
            amount,
            self.account.address
        )._encode_transaction_data()

    def presale_mint_data(self, nft_contract: Contract, amount: int, proof: List[bytes]) -> str:
        return nft_contract.functions.presaleMint(
            amount,
            self.account.address,
            [bytes(node) for node in proof]
        )._encode_transaction_data()

    async def sale_mint(self, nft_contract: Contract, amount: int, price: int) -> HexBytes:
        return await self.estimate_and_send_transaction({
            **(await self.base_tx_params()),
            "to": nft_contract.address,
            "data": self.sale_mint_data(nft_contract, amount),
            "value": price * amount,
            **(await self.eip_1559_gas)
        })

    async def presale_mint(
        self,
        nft_contract: Contract,
        amount: int,
        proof: List[bytes],
        price: int
    ) -> HexBytes:
        return await self.estimate_and_send_transaction({
            **(await self.base_tx_params()),
            "to": nft_contract.address,
            "data": self.presale_mint_data(nft_contract, amount, proof),
            "value": price * amount,
            **(await self.eip_1559_gas)
        })

    async def mint_planned(
        self,
        nft_contract: Contract,
        account_plan: AccountPlan,
        price: int,
        delay_range: Optional[Tuple[int, int]] = None,
        proof: Optional[List[bytes]] = None
    ) -> List[TxReceipt]:
        """Send the mints of ``account_plan`` one after another.

        With a whitelist ``proof`` every tx is a presale mint, otherwise a
        sale mint.
        """

        receipts = []

        for amount in account_plan.tx_plan.tx_sizes:
            if proof is None:
                tx_hash = await self.sale_mint(nft_contract, amount, price)
            else:
                tx_hash = await self.presale_mint(nft_contract, amount, proof, price)
            receipt = await self.wait_for(tx_hash)

            if receipt["status"] != 1:
                logger.error(f"[{self.account.address}] Mint of {amount} reverted: {tx_hash.hex()}")
                break

            logger.success(f"[{self.account.address}] Minted {amount} with hash {tx_hash.hex()}.")
            receipts.append(receipt)

            if delay_range:
                sleep_time = random.randint(*delay_range)
                logger.info(f"[{self.account.address}] Sleep for {sleep_time} seconds.")
                await asyncio.sleep(sleep_time)

        return receipts
