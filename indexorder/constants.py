"""
Index Order Constants

This module consolidates the global constants and environment configuration
used throughout the service. Constants are organized by category for easy
reference and maintenance.
"""
import ast
import re
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

CHAIN_DEFAULTS = {
    'CHAIN_ID':                        '8453',
    'RPC_URL':                         'https://base.llamarpc.com',
    'INDEX_ORACLE_ADDRESS':            '0x55aafa1d3de3d05536c96ee9f1b965d6ce04a4c1',
    'LIMIT_ORDER_PROTOCOL':            '0x111111125421cA6dc452d289314280a0f8842A65',
    'ONEINCH_API_KEY':                 '',
    'ORDERBOOK_API_URL':               'https://api.1inch.dev/orderbook/v4.0',
}

SERVER_DEFAULTS = {
    'INDEXORDER_HOST':                 '127.0.0.1',
    'INDEXORDER_PORT':                 '3001',
    'INDEXORDER_MONITOR_ENABLED':      'True',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_INCLUDE_REQUEST_CONTENT':     'False',
    'LOG_FILE_OUTPUT':                 'True',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_MAX_PATH_LENGTH = 320  # Maximum URL path length to log (truncates longer paths)
LOG_BACKUP_COUNT = 5


# ==================================================================================
# SERVICE METADATA
# ==================================================================================
SERVICE_NAME = 'Index Order Service'
SERVICE_VERSION = '1.0.0'


# ==================================================================================
# LIMIT ORDER PROTOCOL (v4)
# ==================================================================================
EIP712_DOMAIN_NAME = '1inch Aggregation Router'
EIP712_DOMAIN_VERSION = '6'

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'

UINT_40_MAX = (1 << 40) - 1
UINT_160_MAX = (1 << 160) - 1
UINT_256_MAX = (1 << 256) - 1

# MakerTraits flag bits
NO_PARTIAL_FILLS_FLAG = 255
ALLOW_MULTIPLE_FILLS_FLAG = 254
HAS_EXTENSION_FLAG = 249

# MakerTraits field offsets (low bits)
ALLOWED_SENDER_MASK = (1 << 80) - 1
EXPIRATION_OFFSET = 80
NONCE_OR_EPOCH_OFFSET = 120

# Extension layout: eight dynamic fields, predicate is the fifth
EXTENSION_FIELD_COUNT = 8
EXTENSION_PREDICATE_INDEX = 4

# Oracle and protocol call signatures
GET_INDEX_VALUE_SIGNATURE = 'getIndexValue(uint256)'
IS_VALID_INDEX_SIGNATURE = 'isValidIndex(uint256)'
GET_ORACLE_TYPE_SIGNATURE = 'getOracleType(uint256)'
GET_ORACLE_ADDRESS_SIGNATURE = 'getOracleAddress(uint256)'
CANCEL_ORDER_SIGNATURE = 'cancelOrder(uint256,bytes32)'


# ==================================================================================
# ORDER DEFAULTS AND LIMITS
# ==================================================================================
DEFAULT_EXPIRATION_HOURS = 24
MAX_EXPIRATION_HOURS = 24 * 365
PENDING_ORDER_TTL = 60 * 60  # 1 hour to sign and submit
PENDING_SWEEP_INTERVAL = 60.0

# Indices 0..5 are predefined; custom indices are allocated from here upwards
FIRST_CUSTOM_INDEX_ID = 6

# Oracle feeds
FEED_STALENESS_THRESHOLD = 3600.0  # 1 hour without a round marks a feed stale

# Monitor
MONITOR_INTERVAL = 30.0
MONITOR_CALL_TIMEOUT = 10.0

# Submission
SUBMISSION_MAX_ATTEMPTS = 3
SUBMISSION_RETRY_DELAY = 2.0

# Network timeouts
CONNECTION_TIMEOUT = 10.0  # 10 seconds

# Gas headroom applied to estimated cancellation gas (x1.2)
GAS_LIMIT_MULTIPLIER_NUM = 12
GAS_LIMIT_MULTIPLIER_DEN = 10


# ==================================================================================
# VALIDATION PATTERNS
# ==================================================================================
VALID_ORDER_HASH_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')
VALID_SIGNATURE_PATTERN = re.compile(r'^0x[0-9a-fA-F]{130}$')


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    def __hash__(self):
        return hash(bool(self))


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = CHAIN_DEFAULTS | SERVER_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    # Parses only boolean-literals. Leaves other values untouched.
    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
