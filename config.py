"""
SEP DEX — Central Configuration
All thresholds, constants, and env vars for the position engine.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Assets ──────────────────────────────────────────────────────────
SUPPORTED_SYMBOLS = os.getenv('SUPPORTED_SYMBOLS', 'BTC,ETH,STX,SOL').split(',')
SETTLEMENT_SYMBOL = os.getenv('SETTLEMENT_SYMBOL', 'STX')   # collateral + payouts are in STX

COINGECKO_IDS = {
    'BTC': 'bitcoin',
    'ETH': 'ethereum',
    'STX': 'stacks',
    'SOL': 'solana',
}

# ── Position Limits ──────────────────────────────────────────────────
MIN_COLLATERAL = float(os.getenv('MIN_COLLATERAL', '100'))   # in settlement asset units
MIN_LEVERAGE   = 1
MAX_LEVERAGE   = 100                                         # hard cap, never exceed
MICRO_UNITS    = 1_000_000                                   # 1 STX = 1,000,000 microSTX

# ── Payout Conversion ────────────────────────────────────────────────
# Used only when the oracle cannot price the settlement asset.
DEFAULT_STX_USD_RATE = float(os.getenv('DEFAULT_STX_USD_RATE', '2.50'))

# ── Polling Intervals (seconds) ──────────────────────────────────────
LIQUIDATION_CHECK_INTERVAL = float(os.getenv('LIQUIDATION_CHECK_INTERVAL', '30'))
PRICE_CACHE_SECONDS        = float(os.getenv('PRICE_CACHE_SECONDS', '2'))
STATUS_LOG_INTERVAL        = float(os.getenv('STATUS_LOG_INTERVAL', '60'))

# ── External Services ────────────────────────────────────────────────
HTTP_TIMEOUT     = float(os.getenv('HTTP_TIMEOUT', '10'))
COINGECKO_API    = os.getenv('COINGECKO_API', 'https://api.coingecko.com/api/v3')
STACKS_API_URL   = os.getenv('STACKS_API_URL', 'https://api.testnet.hiro.so')
SIGNER_API_URL   = os.getenv('SIGNER_API_URL', 'http://localhost:3000/api/turnkey')

CONTRACT_ADDRESS   = os.getenv('CONTRACT_ADDRESS', 'ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM')
CONTRACT_NAME      = os.getenv('CONTRACT_NAME', 'sep-dex')
COLLECTION_ADDRESS = os.getenv('COLLECTION_ADDRESS', CONTRACT_ADDRESS)

# ── Admin Payout Wallet ──────────────────────────────────────────────
ADMIN_WALLET_ID   = os.getenv('ADMIN_WALLET_ID', '')
ADMIN_WALLET_ADDR = os.getenv('ADMIN_WALLET_ADDR', '')

# ── Persistence ──────────────────────────────────────────────────────
POSITION_STORE_PATH = os.getenv('POSITION_STORE_PATH', 'data/positions.json')
TRADE_LOG_PATH      = os.getenv('TRADE_LOG_PATH', 'data/trades.jsonl')

# ── API ──────────────────────────────────────────────────────────────
API_HOST = os.getenv('API_HOST', '0.0.0.0')
API_PORT = int(os.getenv('API_PORT', '8081'))

# Users whose open positions the background sweep watches from startup
WATCH_USERS = [u for u in os.getenv('WATCH_USERS', '').split(',') if u]

# ── System ──────────────────────────────────────────────────────────
PAPER_TRADE = os.getenv('PAPER_TRADE', 'true').lower() == 'true'
LOG_LEVEL   = os.getenv('LOG_LEVEL', 'INFO')

# Paper prices used when PAPER_TRADE=true and no live oracle is wanted
PAPER_PRICES = {
    'BTC': float(os.getenv('PAPER_PRICE_BTC', '50000')),
    'ETH': float(os.getenv('PAPER_PRICE_ETH', '3000')),
    'STX': float(os.getenv('PAPER_PRICE_STX', '2.5')),
    'SOL': float(os.getenv('PAPER_PRICE_SOL', '150')),
}
PAPER_BALANCE = float(os.getenv('PAPER_BALANCE', '10000'))   # STX credited to new paper wallets

# ── Telegram ─────────────────────────────────────────────────────────
TELEGRAM_TOKEN   = os.getenv('TELEGRAM_TOKEN', '')
TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')
