"""
Project-wide parameters for the prize wheel.

These values define the public rules of the wheel and of the Twitch reward.
Changing them changes what viewers pay and win and MUST be announced.
"""

from decimal import Decimal

# Default payout token (ERC-20 on Avalanche C-Chain)
DEFAULT_TOKEN_ADDRESS = "0x281027C6a46142D6FC57f12665147221CE69Af33"
TOKEN_TYPE = "erc20"

# Wheel layout
DEFAULT_SEGMENTS = ["1", "34", "55", "89", "144", "1", "233", "377", "987"]
MIN_SEGMENTS = 2
WEIGHT_TOTAL = Decimal("100")
WEIGHT_TOLERANCE = 0.5
EXTRA_TURNS = 5

# Timings (seconds)
SPIN_SECONDS = 5.0
SETTLE_DELAY_SECONDS = 1.0
POLL_INTERVAL_SECONDS = 10.0

# Channel-point reward created on the broadcaster's channel
REWARD_TITLE = "Prize wheel spin"
REWARD_COST = 17711
REWARD_PROMPT = "Enter your EVM wallet address"
REWARD_MAX_PER_USER_PER_STREAM = 2
REWARD_BACKGROUND_COLOR = "#9146FF"

TWITCH_API_URL = "https://api.twitch.tv/helix"

# Settlement network
REQUIRED_CHAIN_ID = 43114
REQUIRED_CHAIN_NAME = "Avalanche C-Chain"
DEFAULT_AVALANCHE_RPC_URL = "https://api.avax.network/ext/bc/C/rpc"
NATIVE_CURRENCY = {"name": "Avalanche", "symbol": "AVAX", "decimals": 18}
BLOCK_EXPLORER_URL = "https://snowtrace.io"

# Receipt polling
RECEIPT_TIMEOUT_SECONDS = 180.0
RECEIPT_POLL_SECONDS = 2.0

# Export
EXPORT_HEADER = "token_type,token_address,receiver,amount,id"
EXPORT_FILE_PREFIX = "wheel_payouts"
DEFAULT_SESSION_FILE = "wheel_session.json"
