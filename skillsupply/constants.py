"""Centralized constants for SkillSupply."""

# ---- Rate Limits ----
CREATE_LISTING_RATE_LIMIT: str = "10/minute"
BID_RATE_LIMIT: str = "20/minute"
HIRE_RATE_LIMIT: str = "10/minute"
MESSAGE_RATE_LIMIT: str = "60/minute"

# ---- Field Limits ----
MAX_TITLE_LENGTH: int = 200
MIN_TITLE_LENGTH: int = 3
MAX_DESCRIPTION_LENGTH: int = 5000
MAX_IDENTITY_LENGTH: int = 100
MAX_DISPLAY_NAME_LENGTH: int = 100
MAX_BID_MESSAGE_LENGTH: int = 2000
MAX_REVIEW_LENGTH: int = 2000
MAX_MESSAGE_LENGTH: int = 2000
MAX_TX_REF_LENGTH: int = 200
MAX_AMOUNT: str = "1000000"
MIN_SCORE: int = 1
MAX_SCORE: int = 5

# ---- Money ----
CURRENCY: str = "USDC"
AMOUNT_PLACES: str = "0.000001"
DEFAULT_ESCROW_FEE_RATE: str = "0"

# ---- Payment Rail ----
PAYMENT_RAIL_TIMEOUT_SECONDS: float = 15.0

# ---- Circuit Breaker ----
CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 3
CIRCUIT_BREAKER_RECOVERY_TIMEOUT: float = 60.0  # seconds

# ---- Messages ----
MESSAGE_POLL_INTERVAL_SECONDS: int = 5
MAX_MESSAGES_PER_POLL: int = 100

# ---- Pagination ----
DEFAULT_PAGE_SIZE: int = 50
MAX_PAGE_SIZE: int = 100

# ---- Misc ----
APP_VERSION: str = "0.3.0"

# ---- Error Codes ----
ERR_NOT_FOUND: str = "NOT_FOUND"
ERR_UNAUTHORIZED: str = "UNAUTHORIZED"
ERR_INVALID_STATE: str = "INVALID_STATE"
ERR_VALIDATION: str = "VALIDATION_ERROR"
ERR_DUPLICATE_BID: str = "DUPLICATE_BID"
ERR_DUPLICATE_RATING: str = "DUPLICATE_RATING"
ERR_PAYMENT_VERIFICATION_FAILED: str = "PAYMENT_VERIFICATION_FAILED"
ERR_ESCROW_RELEASE_FAILED: str = "ESCROW_RELEASE_FAILED"
ERR_INTERNAL: str = "INTERNAL_ERROR"

# ---- Valid Categories ----
VALID_CATEGORIES: set[str] = {"development", "design", "writing", "teaching", "business", "other"}
