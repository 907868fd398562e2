# Fixed-point scale for indices, per-second rates and the liquidation bonus
WAD = 10**18

BASIS_POINTS_SCALE = 10000  # 1 basis point = 0.01%
PRICE_SCALE = 10**8  # Posted price scaling factor
SECONDS_PER_DAY = 86400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

# Term bounds
MIN_LIQUIDATION_BONUS = WAD  # 1.0x
MAX_LIQUIDATION_BONUS = 2 * WAD  # 2.0x
MAX_AUCTION_LENGTH = 30 * SECONDS_PER_DAY

# Reference lender defaults
DEFAULT_MAX_LTV = 7000  # 70% in basis points
DEFAULT_LIQUIDATION_THRESHOLD = 8000  # 80% in basis points
DEFAULT_MAX_LOAN_DURATION = 365 * SECONDS_PER_DAY
