import argparse
import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional

from eth_account import Account
from loguru import logger
from web3 import Web3

from config import (
    ACCOUNTS_FILE,
    BANNER_WHITELIST_FILE,
    DELAY_RANGE,
    MAX_FEE_PER_GAS,
    MAX_PRIORITY_FEE_PER_GAS,
    MAX_SHARE_RATIO,
    MIN_SHARE_RATIO,
    NFT_CONTRACT,
    RPC_URLS,
    TOTAL_MINTS,
    WHITELIST_FILE,
)
from moonlanderz.const import NFT_ABI
from moonlanderz.errors import InsufficientFundsError, ProofNotFoundError
from moonlanderz.merkle import LeafKind, WhitelistEntry, leaf_hash, verify_proof
from moonlanderz.mint import (
    Funder,
    NFTMinter,
    NFTOwner,
    RpcPool,
    load_contract,
    read_sale_config,
)
from moonlanderz.planner import MintPlan, build_mint_plan
from moonlanderz.utils import init_logger, load_private_keys
from moonlanderz.whitelist import JsonFileStore, Whitelist

PLAN_FILE = "data/mint_plan.json"


def get_whitelist(args: argparse.Namespace) -> Whitelist:
    if args.banner or getattr(args, "amount", None) is not None:
        return Whitelist(JsonFileStore(BANNER_WHITELIST_FILE), LeafKind.ALLOWANCE)
    return Whitelist(JsonFileStore(WHITELIST_FILE), LeafKind.SIMPLE)


def whitelist_entry(args: argparse.Namespace, whitelist: Whitelist) -> WhitelistEntry:
    if whitelist.kind is LeafKind.ALLOWANCE and args.amount is None:
        raise ValueError("--amount is required for the banner whitelist")
    return WhitelistEntry(args.address, args.amount)


def cmd_add(args: argparse.Namespace) -> None:
    whitelist = get_whitelist(args)
    whitelist.append(args.address, args.amount)

    logger.info(f"Whitelist now holds {len(whitelist.load_snapshot())} entries.")


def cmd_remove(args: argparse.Namespace) -> None:
    whitelist = get_whitelist(args)
    whitelist.remove(args.address)

    logger.info(f"Whitelist now holds {len(whitelist.load_snapshot())} entries.")


def cmd_root(args: argparse.Namespace) -> None:
    tree = get_whitelist(args).build_tree()

    print("MERKLE ROOT")
    print(tree.hex_root)


def cmd_proof(args: argparse.Namespace) -> None:
    whitelist = get_whitelist(args)
    entry = whitelist_entry(args, whitelist)
    tree = whitelist.build_tree()

    print("MERKLE ROOT")
    print(tree.hex_root)
    print("PROOF")
    print(json.dumps(tree.hex_proof_for(entry), indent=2))


async def cmd_verify(args: argparse.Namespace) -> None:
    whitelist = get_whitelist(args)
    entry = whitelist_entry(args, whitelist)
    tree = whitelist.build_tree()

    rpc = RpcPool(RPC_URLS)
    sale_config = await rpc.call(lambda web3: read_sale_config(web3, NFT_CONTRACT))

    if sale_config.merkle_root != tree.root:
        logger.warning(
            f"On-chain root 0x{sale_config.merkle_root.hex()} differs from local root {tree.hex_root}."
        )

    ok = verify_proof(sale_config.merkle_root, tree.proof_for(entry), leaf_hash(entry, whitelist.kind))

    logger.info(f"{entry.address} is whitelisted on-chain: {ok}")


async def cmd_set_root(args: argparse.Namespace) -> None:
    private_keys = load_private_keys(ACCOUNTS_FILE)
    tree = get_whitelist(args).build_tree()

    rpc = RpcPool(RPC_URLS)
    owner = NFTOwner(rpc.web3, private_keys[0])

    tx_hash = await owner.set_merkle_root(load_contract(NFT_ABI, NFT_CONTRACT), tree.root)
    receipt = await owner.wait_for(tx_hash)

    if receipt["status"] == 1:
        logger.success(f"[{owner.account.address}] Merkle root set to {tree.hex_root}.")
    else:
        logger.error(f"[{owner.account.address}] setMerkleRoot reverted: {tx_hash.hex()}")


async def make_plan(rpc: RpcPool, bots: list, args: argparse.Namespace) -> MintPlan:
    sale_config = await rpc.call(lambda web3: read_sale_config(web3, NFT_CONTRACT))
    gas_price = await rpc.call(lambda web3: web3.eth.gas_price)

    logger.info(f"Current gas price is {Web3.from_wei(gas_price, 'gwei')} GWEI")

    return build_mint_plan(
        total_target=args.total,
        accounts=bots,
        max_per_tx=sale_config.max_mint_tx,
        unit_mint_price=sale_config.wl_price if args.presale else sale_config.sale_price,
        gas_price=gas_price,
        min_share_ratio=MIN_SHARE_RATIO,
        max_share_ratio=MAX_SHARE_RATIO,
        presale=args.presale,
    )


def save_plan(plan: MintPlan) -> None:
    path = Path(PLAN_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(plan.to_dict(), indent=2))


async def cmd_plan(args: argparse.Namespace, dispatch: bool = False) -> None:
    private_keys = load_private_keys(ACCOUNTS_FILE)
    bots = [Account.from_key(key).address for key in private_keys[1:]]

    logger.info(f"Total bots: {len(bots)}")

    rpc = RpcPool(RPC_URLS)
    plan = await make_plan(rpc, bots, args)

    for account_plan in plan:
        logger.info(
            f"[{account_plan.address}] {account_plan.mint_count} mints in "
            f"{account_plan.tx_count} txs, {Web3.from_wei(account_plan.value, 'ether')} ETH"
        )
    logger.info(f"Total ETH cost: {Web3.from_wei(plan.total_cost, 'ether')}")

    save_plan(plan)

    if not dispatch:
        return

    funder = Funder(rpc.web3, private_keys[0])

    try:
        report = await funder.dispatch_funding(plan)
    except InsufficientFundsError as e:
        logger.error(f"[{funder.account.address}] {e}")
        return

    for error in report.failures:
        logger.error(f"Not funded: {error.address} ({error.reason})")


def presale_proofs(plan: MintPlan, whitelist: Whitelist) -> Dict[str, List[bytes]]:
    """Whitelist proof of every planned account, accounts without one are left out."""

    tree = whitelist.build_tree()
    proofs = {}

    for account_plan in plan:
        try:
            proofs[account_plan.address] = tree.proof_for(WhitelistEntry(account_plan.address))
        except ProofNotFoundError:
            logger.error(f"[{account_plan.address}] Not whitelisted, skipping presale mint.")

    return proofs


async def worker(
    q: asyncio.Queue,
    rpc: RpcPool,
    plan: MintPlan,
    proofs: Optional[Dict[str, List[bytes]]] = None
) -> None:
    nft_contract = load_contract(NFT_ABI, NFT_CONTRACT)

    while not q.empty():
        private_key = await q.get()
        minter = NFTMinter(rpc.web3, private_key)
        proof = proofs.get(minter.account.address) if proofs is not None else None

        try:
            eip_1559_gas = await minter.eip_1559_gas

            if (
                (eip_1559_gas["maxFeePerGas"] > MAX_FEE_PER_GAS)
                or
                (eip_1559_gas["maxPriorityFeePerGas"] > MAX_PRIORITY_FEE_PER_GAS)
            ):
                logger.error(
                    f"[{minter.account.address}] Gas price is too high: {eip_1559_gas}."
                )
                q.put_nowait(private_key)
                await asyncio.sleep(DELAY_RANGE[0])
                continue

            logger.info(f"[{minter.account.address}] Trying to mint NFT.")

            await minter.mint_planned(
                nft_contract, plan[minter.account.address], plan.unit_price, DELAY_RANGE, proof
            )

        except Exception as e:
            logger.error(
                f"[{minter.account.address}] Failed with error: {e}")


async def cmd_mint(args: argparse.Namespace) -> None:
    private_keys = load_private_keys(ACCOUNTS_FILE)
    plan = MintPlan.from_dict(json.loads(Path(PLAN_FILE).read_text()))

    rpc = RpcPool(RPC_URLS)
    sale_config = await rpc.call(lambda web3: read_sale_config(web3, NFT_CONTRACT))

    on_chain_price = sale_config.wl_price if plan.presale else sale_config.sale_price
    if on_chain_price != plan.unit_price:
        logger.error(
            f"Bots were funded for {plan.unit_price} wei per mint, "
            f"the contract now asks {on_chain_price}. Re-plan before minting."
        )
        return

    proofs = None
    planned = {account_plan.address for account_plan in plan}

    if plan.presale:
        proofs = presale_proofs(plan, Whitelist(JsonFileStore(WHITELIST_FILE), LeafKind.SIMPLE))
        planned = set(proofs)

    q = asyncio.Queue()
    for private_key in private_keys[1:]:
        if Account.from_key(private_key).address in planned:
            q.put_nowait(private_key)

    logger.info(
        f"Loaded {q.qsize()} planned bots. "
        f"Delay range: from {DELAY_RANGE[0]} to {DELAY_RANGE[1]} seconds. "
    )

    # one worker keeps mint txs sequential
    await worker(q, rpc, plan, proofs)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Whitelist and minting bot tooling")
    sub = parser.add_subparsers(dest="cmd", required=True)

    for name, help_text in (
        ("add", "append an address to the whitelist"),
        ("remove", "remove an address from the whitelist"),
        ("proof", "print the merkle root and proof for an address"),
        ("verify", "check an address proof against the on-chain root"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("address")
        p.add_argument("--amount", type=int, default=None, help="mint allowance (banner whitelist)")
        p.add_argument("--banner", action="store_true", help="use the amount-bound whitelist")

    for name, help_text in (
        ("root", "print the merkle root of the whitelist"),
        ("set-root", "set the whitelist merkle root on the NFT contract"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--banner", action="store_true", help="use the amount-bound whitelist")

    for name, help_text in (
        ("plan", "plan mints over the bot accounts"),
        ("fund", "plan mints and send each bot its ETH"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--total", type=int, default=TOTAL_MINTS)
        p.add_argument("--presale", action="store_true", help="plan presale mints at the whitelist price")

    sub.add_parser("mint", help="mint from the bots following the saved plan")

    return parser.parse_args()


async def main():
    init_logger()

    args = parse_args()

    try:
        await run(args)
    except (ProofNotFoundError, ValueError) as e:
        logger.error(str(e))


async def run(args: argparse.Namespace) -> None:
    if args.cmd == "add":
        cmd_add(args)
    elif args.cmd == "remove":
        cmd_remove(args)
    elif args.cmd == "root":
        cmd_root(args)
    elif args.cmd == "proof":
        cmd_proof(args)
    elif args.cmd == "verify":
        await cmd_verify(args)
    elif args.cmd == "set-root":
        await cmd_set_root(args)
    elif args.cmd == "plan":
        await cmd_plan(args)
    elif args.cmd == "fund":
        await cmd_plan(args, dispatch=True)
    elif args.cmd == "mint":
        await cmd_mint(args)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Exiting...")
