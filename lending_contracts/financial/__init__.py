"""Financial Smart Contracts Module

This module contains the peer-to-peer lending contracts:

- Token contract (ERC-20 compatible asset custody)
- Lending coordinator: loan lifecycle, borrow-index interest accrual, two-phase
  Dutch auction liquidation and flash loans
- Collaborator protocol (lender, borrower and flash-loan receiver callbacks)
- Reference collaborators: an annual rate source and a loan-to-value lender

All contracts are built on top of the smart contract engine.
"""

from .constants import (
    WAD,
    BASIS_POINTS_SCALE,
    PRICE_SCALE,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    MIN_LIQUIDATION_BONUS,
    MAX_LIQUIDATION_BONUS,
    MAX_AUCTION_LENGTH,
    DEFAULT_MAX_LTV,
    DEFAULT_LIQUIDATION_THRESHOLD,
    DEFAULT_MAX_LOAN_DURATION
)
from .token import ERC20Token
from .errors import (
    LendingError,
    VerificationFailed,
    Unauthorized,
    InvalidStateTransition,
    TermInTransition,
    AuctionTimingError,
    AuctionNotLive,
    AuctionNotExpired,
    InvalidBid,
    InvalidTerms,
    InvalidAmount,
    HookFailed,
    FlashLoanFailed,
    TransferFailed,
    LoanNotFound,
    AuctionNotFound,
    TermNotFound
)
from .interest import Term, TermRegistry, interest_owed, validate_term
from .auction import Auction, AuctionBook, AuctionStatus, dutch_auction_price
from .hooks import (
    LenderHooks,
    BorrowerHooks,
    FlashLoanReceiver,
    HookDispatcher,
    HookResult,
    selector,
    VERIFY_LOAN_ACK,
    DEBT_CHANGED_ACK,
    COLLATERAL_CHANGED_ACK,
    LOAN_SETTLED_ACK,
    FLASH_LOAN_ACK,
    BORROWER_HOOKS_INTERFACE
)
from .lending import LendingCoordinator, Loan, LoanState, BorrowerIndex
from .rates import AnnualRateSource, apr_to_rate_per_second
from .lenders import CollateralRatioLender

__all__ = [
    # Token contracts
    'ERC20Token',

    # Lending contracts
    'LendingCoordinator',
    'Loan',
    'LoanState',
    'BorrowerIndex',
    'Term',
    'TermRegistry',
    'interest_owed',
    'validate_term',
    'Auction',
    'AuctionBook',
    'AuctionStatus',
    'dutch_auction_price',

    # Collaborators
    'LenderHooks',
    'BorrowerHooks',
    'FlashLoanReceiver',
    'HookDispatcher',
    'HookResult',
    'selector',
    'AnnualRateSource',
    'apr_to_rate_per_second',
    'CollateralRatioLender',

    # Errors
    'LendingError',
    'VerificationFailed',
    'Unauthorized',
    'InvalidStateTransition',
    'TermInTransition',
    'AuctionTimingError',
    'AuctionNotLive',
    'AuctionNotExpired',
    'InvalidBid',
    'InvalidTerms',
    'InvalidAmount',
    'HookFailed',
    'FlashLoanFailed',
    'TransferFailed',
    'LoanNotFound',
    'AuctionNotFound',
    'TermNotFound'
]

__version__ = '1.0.0'

CONFIG = {
    'WAD': WAD,
    'BASIS_POINTS_SCALE': BASIS_POINTS_SCALE,
    'PRICE_SCALE': PRICE_SCALE,
    'SECONDS_PER_YEAR': SECONDS_PER_YEAR,
    'MIN_LIQUIDATION_BONUS': MIN_LIQUIDATION_BONUS,
    'MAX_LIQUIDATION_BONUS': MAX_LIQUIDATION_BONUS,
    'MAX_AUCTION_LENGTH': MAX_AUCTION_LENGTH,
    'DEFAULT_MAX_LTV': DEFAULT_MAX_LTV,
    'DEFAULT_LIQUIDATION_THRESHOLD': DEFAULT_LIQUIDATION_THRESHOLD,
    'DEFAULT_MAX_LOAN_DURATION': DEFAULT_MAX_LOAN_DURATION
}
