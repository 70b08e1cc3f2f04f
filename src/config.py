# rpc endpoints, tried round-robin when one fails
RPC_URLS = [
    "https://rpc.ankr.com/eth",
    "https://eth.llamarpc.com",
]

NFT_CONTRACT = "0xE405168Ce501F526045d33A1f056E145275C54A7"

# first key is the funding (deployer) account, the others are minting bots
ACCOUNTS_FILE = "accounts.txt"

# whitelist files: array of addresses / array of {address, amount}
WHITELIST_FILE = "data/whitelist.json"
BANNER_WHITELIST_FILE = "data/banner_whitelist.json"

# mints spread over the bots
TOTAL_MINTS = 1000
# each bot but the last gets between 1.4% and 12.6% of TOTAL_MINTS
MIN_SHARE_RATIO = 0.014
MAX_SHARE_RATIO = 0.126

# delay between mint txs of one bot, from N to M seconds
DELAY_RANGE = 5, 420

# eip1559 gas price caps in wei, minting waits while the network is above them
MAX_FEE_PER_GAS = 80_000_000_000
MAX_PRIORITY_FEE_PER_GAS = 3_000_000_000
