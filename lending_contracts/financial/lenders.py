from typing import Any, Dict
import logging

from ..engine import SmartContract
from .constants import (
    BASIS_POINTS_SCALE, PRICE_SCALE, DEFAULT_MAX_LTV, DEFAULT_LIQUIDATION_THRESHOLD,
    DEFAULT_MAX_LOAN_DURATION
)
from .errors import Unauthorized
from .hooks import (
    LenderHooks, VERIFY_LOAN_ACK, DEBT_CHANGED_ACK, COLLATERAL_CHANGED_ACK, LOAN_SETTLED_ACK
)

logger = logging.getLogger(__name__)

class CollateralRatioLender(LenderHooks, SmartContract):
    """Lender that funds loans from its own balance and polices loan-to-value

    Prices are posted by the owner (scaled by 10^8). Loans are approved, and extra
    borrowing or collateral withdrawals acknowledged, only while the loan-to-value
    ratio stays at or under ``max_ltv``. A loan becomes liquidatable once its LTV
    reaches ``liquidation_threshold`` or it outlives ``max_loan_duration``.
    """

    def __init__(self, owner: str, coordinator: str,
                 max_ltv: int = DEFAULT_MAX_LTV,
                 liquidation_threshold: int = DEFAULT_LIQUIDATION_THRESHOLD,
                 max_loan_duration: int = DEFAULT_MAX_LOAN_DURATION):
        super().__init__()

        self.owner = owner
        self.coordinator = coordinator
        self.max_ltv = max_ltv
        self.liquidation_threshold = liquidation_threshold
        self.max_loan_duration = max_loan_duration

        self.price_feeds: Dict[str, int] = {}  # token -> price_in_usd (scaled by 10^8)
        self.loan_start_times: Dict[int, int] = {}
        self.recovered: Dict[int, int] = {}  # loan_id -> debt asset received at settlement

    def set_price_feed(self, token: str, price: int) -> bool:
        """Set price feed for a token"""
        caller = self._get_caller()
        if caller != self.owner or price < 0:
            return False

        self.price_feeds[token] = price

        self._emit_event('PriceFeedUpdated', {
            'token': token,
            'price': price
        })

        return True

    def approve_coordinator(self, token: str, amount: int) -> bool:
        """Allow the coordinator to draw loan funds from this lender"""
        if self._get_caller() != self.owner:
            return False
        return self._call(token, 'approve', self.coordinator, amount)

    def withdraw(self, token: str, to: str, amount: int) -> bool:
        """Move funds out of the lender"""
        if self._get_caller() != self.owner:
            return False
        return self._call(token, 'transfer', to, amount)

    # Coordinator callbacks

    def verify_loan(self, loan, data: bytes) -> str:
        self._require_coordinator()
        if self.loan_ltv(loan) > self.max_ltv:
            logger.info(f"Lender {self.address} declined loan {loan.id}: LTV above {self.max_ltv}")
            return ""

        self.loan_start_times[loan.id] = self._now()
        return VERIFY_LOAN_ACK

    def on_debt_changed(self, loan, amount: int) -> str:
        self._require_coordinator()
        if amount < 0 and self.loan_ltv(loan) > self.max_ltv:
            return ""
        return DEBT_CHANGED_ACK

    def on_collateral_changed(self, loan, amount: int) -> str:
        self._require_coordinator()
        if amount < 0 and self.loan_ltv(loan) > self.max_ltv:
            return ""
        return COLLATERAL_CHANGED_ACK

    def on_loan_settled(self, loan, amount_recovered: int) -> str:
        self._require_coordinator()
        self.recovered[loan.id] = amount_recovered
        return LOAN_SETTLED_ACK

    # Risk management

    def loan_ltv(self, loan) -> int:
        """Loan-to-value in basis points; effectively infinite without prices"""
        collateral_price = self.price_feeds.get(loan.collateral_asset, 0)
        debt_price = self.price_feeds.get(loan.debt_asset, 0)
        if loan.debt_amount == 0:
            return 0

        collateral_value = (loan.collateral_amount * collateral_price) // PRICE_SCALE
        debt_value = (loan.debt_amount * debt_price) // PRICE_SCALE
        if collateral_value == 0 or debt_price == 0:
            return 2**256

        return (debt_value * BASIS_POINTS_SCALE) // collateral_value

    def is_liquidatable(self, loan) -> bool:
        """Check if a loan is under-collateralized or matured"""
        if self.loan_ltv(loan) >= self.liquidation_threshold:
            return True
        start = self.loan_start_times.get(loan.id)
        return start is not None and self._now() >= start + self.max_loan_duration

    def liquidate_if_unhealthy(self, loan_id: int):
        """Start liquidation of a loan that breaches the threshold or has matured

        Returns the auction id (None for instant seizure), or False when the loan is
        healthy.
        """
        if self._get_caller() != self.owner:
            raise Unauthorized("Only the lender owner may liquidate")

        loan = self._call(self.coordinator, 'get_loan', loan_id, True)
        if not self.is_liquidatable(loan):
            return False
        return self._call(self.coordinator, 'liquidate', loan_id)

    def stop_auction(self, auction_id: int) -> bool:
        if self._get_caller() != self.owner:
            raise Unauthorized("Only the lender owner may stop auctions")
        return self._call(self.coordinator, 'stop_auction', auction_id)

    def get_loan_health(self, loan_id: int) -> Dict[str, Any]:
        """Get loan risk information"""
        loan = self._call(self.coordinator, 'get_loan', loan_id, True)
        ltv = self.loan_ltv(loan)
        return {
            'loan_id': loan_id,
            'state': loan.state.value,
            'debt_amount': loan.debt_amount,
            'collateral_amount': loan.collateral_amount,
            'current_ltv': ltv,
            'max_ltv': self.max_ltv,
            'liquidation_threshold': self.liquidation_threshold,
            'is_liquidatable': self.is_liquidatable(loan)
        }

    def _require_coordinator(self):
        if self._get_caller() != self.coordinator:
            raise Unauthorized("Callbacks are only accepted from the coordinator")
