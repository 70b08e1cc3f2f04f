"""
Tests for funding dispatch, minting and RPC helpers against fake web3 objects
"""

import asyncio

import pytest
from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3

from moonlanderz.const import NFT_ABI, TRANSFER_GAS_LIMIT
from moonlanderz.errors import InsufficientFundsError
from moonlanderz.mint import Funder, NFTMinter, NFTOwner, RpcPool, load_contract, time_travel
from moonlanderz.planner import AccountPlan, MintPlan, compute_tx_plan

# hardhat account #0
PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcaf784d7bf4f2ff80"
FUNDER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

BOT1 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BOT2 = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
BOT3 = "0x90F79bf6EB2c4f870365E785982E1f101E93b906"

NFT_ADDRESS = Web3.to_checksum_address("0xe405168ce501f526045d33a1f056e145275c54a7")
GWEI = 10 ** 9


class FakeEth:
    def __init__(self, balance=10 ** 21, fail_for=(), revert_for=()):
        self._balance = balance
        self.fail_for = set(fail_for)
        self.revert_for = set(revert_for)
        self.events = []
        self.estimated = []
        self.pending = {}

    @property
    async def chain_id(self):
        return 31337

    @property
    async def gas_price(self):
        return GWEI

    @property
    async def max_priority_fee(self):
        return GWEI // 10

    async def get_balance(self, address):
        return self._balance

    async def get_transaction_count(self, address, block_identifier):
        return len(self.pending)

    async def estimate_gas(self, tx_params):
        self.estimated.append(dict(tx_params))
        return TRANSFER_GAS_LIMIT

    async def send_raw_transaction(self, raw_tx):
        to = self.estimated[-1]["to"]
        if to in self.fail_for:
            raise ValueError("nonce too low")

        tx_hash = HexBytes(keccak(bytes(raw_tx)))
        self.pending[tx_hash] = to
        self.events.append(("send", to))
        return tx_hash

    async def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        to = self.pending[tx_hash]
        self.events.append(("receipt", to))
        return {"transactionHash": tx_hash, "status": 0 if to in self.revert_for else 1}


class FakeProvider:
    def __init__(self):
        self.requests = []

    async def make_request(self, method, params):
        self.requests.append((method, params))
        return {"result": None}


class FakeWeb3:
    def __init__(self, eth=None):
        self.eth = eth or FakeEth()
        self.provider = FakeProvider()


def make_plan(*addresses, mint_count=3, gas_price=GWEI):
    return MintPlan(
        accounts=tuple(
            AccountPlan(
                address=address,
                mint_count=mint_count,
                tx_plan=compute_tx_plan(mint_count, 20),
                eth_for_mint=mint_count * 10 ** 16,
                eth_for_gas=10 ** 15,
            )
            for address in addresses
        ),
        gas_price=gas_price,
    )


class TestDispatchFunding:
    """Tests for Funder.dispatch_funding."""

    def test_all_accounts_funded_in_order(self):
        web3 = FakeWeb3()
        funder = Funder(web3, PRIVATE_KEY)
        plan = make_plan(BOT1, BOT2, BOT3)

        report = asyncio.run(funder.dispatch_funding(plan))

        assert report.ok
        assert list(report.receipts) == [BOT1, BOT2, BOT3]
        assert web3.eth.events == [
            ("send", BOT1), ("receipt", BOT1),
            ("send", BOT2), ("receipt", BOT2),
            ("send", BOT3), ("receipt", BOT3),
        ]

    def test_transfers_carry_planned_value_and_gas_price(self):
        web3 = FakeWeb3()
        funder = Funder(web3, PRIVATE_KEY)
        plan = make_plan(BOT1, gas_price=7 * GWEI)

        asyncio.run(funder.dispatch_funding(plan))

        tx_params = web3.eth.estimated[0]
        assert tx_params["value"] == plan.accounts[0].value
        assert tx_params["gasPrice"] == 7 * GWEI
        assert tx_params["gas"] == TRANSFER_GAS_LIMIT
        assert tx_params["from"] == FUNDER_ADDRESS

    def test_insufficient_funds_sends_nothing(self):
        plan = make_plan(BOT1, BOT2)
        web3 = FakeWeb3(FakeEth(balance=plan.total_cost - 1))
        funder = Funder(web3, PRIVATE_KEY)

        with pytest.raises(InsufficientFundsError):
            asyncio.run(funder.dispatch_funding(plan))

        assert web3.eth.events == []
        assert web3.eth.estimated == []

    def test_exact_balance_is_enough(self):
        plan = make_plan(BOT1)
        web3 = FakeWeb3(FakeEth(balance=plan.total_cost))

        report = asyncio.run(Funder(web3, PRIVATE_KEY).dispatch_funding(plan))

        assert report.ok

    def test_failures_do_not_stop_other_transfers(self):
        web3 = FakeWeb3(FakeEth(fail_for=[BOT1], revert_for=[BOT2]))
        funder = Funder(web3, PRIVATE_KEY)

        report = asyncio.run(funder.dispatch_funding(make_plan(BOT1, BOT2, BOT3)))

        assert not report.ok
        assert list(report.receipts) == [BOT3]
        assert [error.address for error in report.failures] == [BOT1, BOT2]
        assert "nonce too low" in report.failures[0].reason
        assert report.failures[1].reason == "transaction reverted"

    def test_halt_between_accounts(self):
        web3 = FakeWeb3()
        funder = Funder(web3, PRIVATE_KEY)
        calls = []

        def should_continue():
            calls.append(1)
            return len(calls) <= 1

        report = asyncio.run(funder.dispatch_funding(make_plan(BOT1, BOT2, BOT3), should_continue))

        assert list(report.receipts) == [BOT1]
        assert web3.eth.events == [("send", BOT1), ("receipt", BOT1)]


class TestNFTMinter:
    """Tests for NFTMinter and NFTOwner."""

    def test_mint_planned_splits_into_tx_sizes(self):
        web3 = FakeWeb3()
        minter = NFTMinter(web3, PRIVATE_KEY)
        nft_contract = load_contract(NFT_ABI, NFT_ADDRESS)
        account_plan = make_plan(FUNDER_ADDRESS, mint_count=25).accounts[0]

        receipts = asyncio.run(minter.mint_planned(nft_contract, account_plan, price=100))

        assert len(receipts) == 2
        assert [tx["value"] for tx in web3.eth.estimated] == [100 * 20, 100 * 5]
        assert all(tx["to"] == NFT_ADDRESS for tx in web3.eth.estimated)

    def test_mint_planned_stops_on_revert(self):
        web3 = FakeWeb3(FakeEth(revert_for=[NFT_ADDRESS]))
        minter = NFTMinter(web3, PRIVATE_KEY)
        nft_contract = load_contract(NFT_ABI, NFT_ADDRESS)
        account_plan = make_plan(FUNDER_ADDRESS, mint_count=45).accounts[0]

        receipts = asyncio.run(minter.mint_planned(nft_contract, account_plan, price=100))

        assert receipts == []
        assert len(web3.eth.estimated) == 1

    def test_mint_planned_with_proof_sends_presale_mints(self):
        web3 = FakeWeb3()
        minter = NFTMinter(web3, PRIVATE_KEY)
        nft_contract = load_contract(NFT_ABI, NFT_ADDRESS)
        account_plan = make_plan(FUNDER_ADDRESS, mint_count=25).accounts[0]
        whitelist_proof = [keccak(b"sibling")]

        receipts = asyncio.run(
            minter.mint_planned(nft_contract, account_plan, price=40, proof=whitelist_proof)
        )

        assert len(receipts) == 2
        assert [tx["value"] for tx in web3.eth.estimated] == [40 * 20, 40 * 5]
        assert [tx["data"] for tx in web3.eth.estimated] == [
            minter.presale_mint_data(nft_contract, 20, whitelist_proof),
            minter.presale_mint_data(nft_contract, 5, whitelist_proof),
        ]

    def test_mint_planned_without_proof_sends_sale_mints(self):
        web3 = FakeWeb3()
        minter = NFTMinter(web3, PRIVATE_KEY)
        nft_contract = load_contract(NFT_ABI, NFT_ADDRESS)
        account_plan = make_plan(FUNDER_ADDRESS, mint_count=3).accounts[0]

        asyncio.run(minter.mint_planned(nft_contract, account_plan, price=40))

        assert web3.eth.estimated[0]["data"] == minter.sale_mint_data(nft_contract, 3)

    def test_presale_mint_value(self):
        web3 = FakeWeb3()
        minter = NFTMinter(web3, PRIVATE_KEY)
        nft_contract = load_contract(NFT_ABI, NFT_ADDRESS)

        asyncio.run(minter.presale_mint(nft_contract, 2, [keccak(b"sibling")], price=50))

        assert web3.eth.estimated[0]["value"] == 100

    def test_set_merkle_root(self):
        web3 = FakeWeb3()
        owner = NFTOwner(web3, PRIVATE_KEY)
        nft_contract = load_contract(NFT_ABI, NFT_ADDRESS)

        asyncio.run(owner.set_merkle_root(nft_contract, keccak(b"root")))

        tx_params = web3.eth.estimated[0]
        assert tx_params["to"] == NFT_ADDRESS
        assert tx_params["value"] == 0
        assert keccak(b"root").hex() in str(tx_params["data"])


class TestRpcPool:
    """Tests for RpcPool."""

    def test_rotates_to_next_rpc(self):
        created = []

        def factory(url):
            created.append(url)
            return url

        async def fn(web3):
            if web3 == "http://a":
                raise ConnectionError("down")
            return web3

        pool = RpcPool(["http://a", "http://b"], web3_factory=factory)

        assert asyncio.run(pool.call(fn)) == "http://b"
        assert created == ["http://a", "http://b"]

    def test_gives_up_after_max_depth(self):
        attempts = []

        async def fn(web3):
            attempts.append(web3)
            raise ConnectionError("down")

        pool = RpcPool(["http://a", "http://b"], web3_factory=lambda url: url)

        with pytest.raises(RuntimeError):
            asyncio.run(pool.call(fn))

        assert attempts == ["http://a", "http://b", "http://a", "http://b"]

    def test_requires_urls(self):
        with pytest.raises(ValueError):
            RpcPool([])


class TestTimeTravel:
    def test_increases_time_and_mines(self):
        web3 = FakeWeb3()

        asyncio.run(time_travel(web3, 1200))

        assert web3.provider.requests == [("evm_increaseTime", [1200]), ("evm_mine", [])]
