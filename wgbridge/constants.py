"""
wgbridge Constants

All bridge defaults and ledger constants defined here for single source of truth.
"""

from typing import Final, Dict

# ==============================================================================
# LEDGER RPC CONSTANTS
# ==============================================================================

RATE_LIMIT_ERROR_CODE: Final[int] = -32016     # Sentinel code from the RPC layer
HTTP_TOO_MANY_REQUESTS: Final[int] = 429

DEFAULT_NETWORK: Final[str] = "base"
DEFAULT_CONTRACT_ADDRESS: Final[str] = "0x37d2106bADB01dd5bE1926e45D172Cb4203C4186"
DEFAULT_RPC_TIMEOUT_SEC: Final[float] = 15.0
DEFAULT_RECEIPT_TIMEOUT_SEC: Final[float] = 120.0
DEFAULT_RECEIPT_POLL_SEC: Final[float] = 2.0

# Network presets: rpc_url, chain_id, explorer_url
NETWORKS: Final[Dict[str, Dict[str, object]]] = {
    "base": {
        "rpc_url": "https://mainnet.base.org",
        "chain_id": 8453,
        "explorer_url": "https://basescan.org",
    },
    "base-sepolia": {
        "rpc_url": "https://sepolia.base.org",
        "chain_id": 84532,
        "explorer_url": "https://sepolia.basescan.org",
    },
    "localhost": {
        "rpc_url": "http://127.0.0.1:8545",
        "chain_id": 31337,
        "explorer_url": "",
    },
}

# ==============================================================================
# CALL GATEWAY CONSTANTS
# ==============================================================================

GATEWAY_CACHE_TTL_SEC: Final[float] = 30.0
GATEWAY_MAX_RETRIES: Final[int] = 3
GATEWAY_BASE_DELAY_MS: Final[int] = 1000
GATEWAY_MAX_DELAY_MS: Final[int] = 10000
GATEWAY_BACKOFF_MULTIPLIER: Final[float] = 2.0

# ==============================================================================
# ACCESS CACHE CONSTANTS
# ==============================================================================

ACCESS_CACHE_TTL_SEC: Final[float] = 30.0
ACCESS_MAX_CACHE_SIZE: Final[int] = 1000
MASK_VISIBLE_CHARS: Final[int] = 8

# ==============================================================================
# REGISTRY CONSTANTS
# ==============================================================================

REGISTRY_VERSION: Final[str] = "2.0"
REGISTRY_FILENAME: Final[str] = "peer-registry.json"
NETWORK_CIDR: Final[str] = "10.0.0.0/24"
DNS_SERVER: Final[str] = "10.0.0.1"
ADDRESS_PREFIX: Final[str] = "10.0.0."
FIRST_HOST_OCTET: Final[int] = 1
LAST_HOST_OCTET: Final[int] = 254
HOST_OCTET_SPAN: Final[int] = 254
HOSTNAME_SUFFIX: Final[str] = "vpn.dstack"

SYNC_INTERVAL_SEC: Final[float] = 60.0
EVENT_SYNC_DELAY_SEC: Final[float] = 5.0
MAX_TOKEN_ID: Final[int] = 1000
SYNC_UNHEALTHY_AFTER_ERRORS: Final[int] = 5

# ==============================================================================
# NODE IDENTITY CONSTANTS
# ==============================================================================

NODE_ID_MIN_LENGTH: Final[int] = 3
NODE_ID_MAX_LENGTH: Final[int] = 50
NODE_ID_PATTERN: Final[str] = r"^[A-Za-z0-9_-]{3,50}$"
PUBLIC_KEY_SIZE: Final[int] = 32
PUBLIC_KEY_B64_LENGTH: Final[int] = 44
ADDRESS_PATTERN: Final[str] = r"^0x[0-9a-fA-F]{40}$"
TOKEN_URI_BASE: Final[str] = "https://api.dstack.vpn/metadata/"

# ==============================================================================
# TUNNEL CONSTANTS
# ==============================================================================

WIREGUARD_DIR: Final[str] = "/etc/wireguard"
INTERFACE_NAME: Final[str] = "wg0"
LISTEN_PORT: Final[int] = 51820
PERSISTENT_KEEPALIVE: Final[int] = 25
MAX_BACKUPS: Final[int] = 10
CONFIG_FILE_MODE: Final[int] = 0o600
DIRECTORY_MODE: Final[int] = 0o700
RESTART_TIMEOUT_SEC: Final[float] = 30.0

POST_UP_COMMANDS: Final[tuple] = (
    "iptables -A FORWARD -i %i -j ACCEPT",
    "iptables -A FORWARD -o %i -j ACCEPT",
    "iptables -t nat -A POSTROUTING -o eth0 -j MASQUERADE",
)
POST_DOWN_COMMANDS: Final[tuple] = (
    "iptables -D FORWARD -i %i -j ACCEPT",
    "iptables -D FORWARD -o %i -j ACCEPT",
    "iptables -t nat -D POSTROUTING -o eth0 -j MASQUERADE",
)

# ==============================================================================
# BRIDGE CONSTANTS
# ==============================================================================

HEALTH_CHECK_INTERVAL_SEC: Final[float] = 30.0
EVENT_POLL_INTERVAL_SEC: Final[float] = 15.0
