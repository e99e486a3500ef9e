import os
from dataclasses import dataclass
from dotenv import load_dotenv

from services.errors import UnsupportedChainError

load_dotenv()

# Discord Configuration
TOKEN = os.getenv("DISCORD_TOKEN")
OWNER_IDS = [int(x) for x in os.getenv("OWNER_IDS", "0").split(",") if x.strip().isdigit()]

# Users
MAX_USERS = int(os.getenv("MAX_USERS", "3"))
DEFAULT_ENCRYPTION_KEY = "default-key-change-in-production"
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", DEFAULT_ENCRYPTION_KEY)

# Database (falls back to local SQLite when unset)
DATABASE_URL = os.getenv("DATABASE_URL")
INACTIVE_USER_HOURS = int(os.getenv("INACTIVE_USER_HOURS", "24"))

# Mode
TEST_MODE = os.getenv("TEST_MODE", os.getenv("TESTNET_MODE", "false")).lower() == "true"
ENABLED_CHAINS = [
    c.strip() for c in os.getenv("ENABLED_CHAINS", "ethereum").split(",") if c.strip()
]

# =====================================================
# PRICE ORACLE
# =====================================================

COINGECKO_API_URL = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3/simple/price")
PRICE_CACHE_TTL = float(os.getenv("PRICE_CACHE_TTL", "1800"))          # 30 minutes
PRICE_RATE_LIMIT_DELAY = float(os.getenv("PRICE_RATE_LIMIT_DELAY", "2"))  # 30 calls/min
PRICE_BATCH_SIZE = int(os.getenv("PRICE_BATCH_SIZE", "30"))
PRICE_MAX_RETRIES = int(os.getenv("PRICE_MAX_RETRIES", "3"))
PRICE_RETRY_DELAY = float(os.getenv("PRICE_RETRY_DELAY", "5"))
PRICE_EVICT_AFTER = float(os.getenv("PRICE_EVICT_AFTER", str(24 * 3600)))
PRICE_WARMUP_SYMBOLS = ["eth", "matic", "mnt", "usdt", "usdc", "weth", "wbtc"]

# =====================================================
# SWEEP EXECUTION
# =====================================================

CONFIRMATION_TIMEOUT = float(os.getenv("CONFIRMATION_TIMEOUT", "60"))
PROCESSED_TX_SOFT_CAP = int(os.getenv("PROCESSED_TX_SOFT_CAP", "1000"))
PROCESSED_TX_KEEP = int(os.getenv("PROCESSED_TX_KEEP", "500"))

# =====================================================
# CHAIN RPC CONFIGURATION
# =====================================================

ALCHEMY_API_KEY = os.getenv("ALCHEMY_API_KEY", "")

CHAINS = {
    "ethereum": {
        "name": "Ethereum",
        "rpc": os.getenv("ETH_RPC", f"https://eth-mainnet.g.alchemy.com/v2/{ALCHEMY_API_KEY}"),
        "alchemy": f"https://eth-mainnet.g.alchemy.com/v2/{ALCHEMY_API_KEY}",
        "symbol": "ETH",
        "decimals": 18,
        "chain_id": 1,
        "explorer": "https://etherscan.io/tx/{tx}",
    },
    "polygon": {
        "name": "Polygon",
        "rpc": os.getenv("POLYGON_RPC", f"https://polygon-mainnet.g.alchemy.com/v2/{ALCHEMY_API_KEY}"),
        "alchemy": f"https://polygon-mainnet.g.alchemy.com/v2/{ALCHEMY_API_KEY}",
        "symbol": "MATIC",
        "decimals": 18,
        "chain_id": 137,
        "explorer": "https://polygonscan.com/tx/{tx}",
    },
    "mantle": {
        "name": "Mantle",
        "rpc": os.getenv("MANTLE_RPC", f"https://mantle-mainnet.g.alchemy.com/v2/{ALCHEMY_API_KEY}"),
        "alchemy": f"https://mantle-mainnet.g.alchemy.com/v2/{ALCHEMY_API_KEY}",
        "symbol": "MNT",
        "decimals": 18,
        "chain_id": 5000,
        "explorer": "https://explorer.mantle.xyz/tx/{tx}",
    },
}

TESTNET_CHAINS = {
    "ethereum": {
        "name": "Ethereum Sepolia",
        "rpc": os.getenv("ETH_RPC", f"https://eth-sepolia.g.alchemy.com/v2/{ALCHEMY_API_KEY}"),
        "alchemy": f"https://eth-sepolia.g.alchemy.com/v2/{ALCHEMY_API_KEY}",
        "symbol": "ETH",
        "decimals": 18,
        "chain_id": 11155111,
        "explorer": "https://sepolia.etherscan.io/tx/{tx}",
    },
    "polygon": {
        "name": "Polygon Amoy",
        "rpc": os.getenv("POLYGON_RPC", f"https://polygon-amoy.g.alchemy.com/v2/{ALCHEMY_API_KEY}"),
        "alchemy": f"https://polygon-amoy.g.alchemy.com/v2/{ALCHEMY_API_KEY}",
        "symbol": "MATIC",
        "decimals": 18,
        "chain_id": 80002,
        "explorer": "https://amoy.polygonscan.com/tx/{tx}",
    },
    "mantle": {
        "name": "Mantle Testnet",
        "rpc": os.getenv("MANTLE_RPC", f"https://mantle-sepolia.g.alchemy.com/v2/{ALCHEMY_API_KEY}"),
        "alchemy": f"https://mantle-sepolia.g.alchemy.com/v2/{ALCHEMY_API_KEY}",
        "symbol": "MNT",
        "decimals": 18,
        "chain_id": 5003,
        "explorer": "https://explorer.sepolia.mantle.xyz/tx/{tx}",
    },
}

# USD thresholds and poll interval (seconds) per chain
SWEEP_POLICY = {
    "ethereum": {"usd_threshold": 10, "native_usd_threshold": 5, "poll_interval": 20},
    "polygon": {"usd_threshold": 5, "native_usd_threshold": 20, "poll_interval": 20},
    "mantle": {"usd_threshold": 5, "native_usd_threshold": 20, "poll_interval": 20},
}
TESTNET_SWEEP_POLICY = {"usd_threshold": 1, "native_usd_threshold": 10, "poll_interval": 30}


@dataclass(frozen=True)
class ChainProfile:
    key: str
    name: str
    chain_id: int
    native_symbol: str
    native_decimals: int
    usd_threshold: float
    native_usd_threshold: float
    poll_interval: float
    explorer_url: str = ""
    rpc_url: str = ""
    alchemy_url: str = ""
    testnet: bool = False

    @property
    def display_name(self):
        """Chain name without the testnet suffix, for user-facing text."""
        name = self.name
        for suffix in (" Testnet", " Sepolia", " Amoy"):
            name = name.replace(suffix, "")
        return name


def _build_profile(key, chain, policy, testnet):
    return ChainProfile(
        key=key,
        name=chain["name"],
        chain_id=chain["chain_id"],
        native_symbol=chain["symbol"],
        native_decimals=chain["decimals"],
        usd_threshold=float(policy["usd_threshold"]),
        native_usd_threshold=float(policy["native_usd_threshold"]),
        poll_interval=float(policy["poll_interval"]),
        explorer_url=chain["explorer"],
        rpc_url=chain["rpc"],
        alchemy_url=chain["alchemy"],
        testnet=testnet,
    )


def get_chain_profiles(test_mode=None, enabled=None):
    """Return {chain_key: ChainProfile} for the active mode and enabled chains."""
    if test_mode is None:
        test_mode = TEST_MODE
    if enabled is None:
        enabled = ENABLED_CHAINS

    table = TESTNET_CHAINS if test_mode else CHAINS
    profiles = {}
    for key in enabled:
        chain = table.get(key)
        if not chain:
            continue
        policy = TESTNET_SWEEP_POLICY if test_mode else SWEEP_POLICY[key]
        profiles[key] = _build_profile(key, chain, policy, test_mode)
    return profiles


def get_chain_profile(key, test_mode=None):
    profile = get_chain_profiles(test_mode, enabled=[key]).get(key)
    if profile is None:
        raise UnsupportedChainError(f"Unsupported chain: {key}")
    return profile
