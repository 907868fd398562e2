"""Two-phase Dutch auction used to liquidate loans.

For the first half of an auction the bidder pays the full recovery amount and the
collateral on offer rises linearly from nothing to the whole posted collateral. For
the second half the whole collateral is on offer and the price falls linearly to zero.
Once the duration has elapsed both sides are zero and only a reclaim can close it.
"""

from typing import Dict, Optional, Tuple
from dataclasses import dataclass, replace
from enum import Enum

from .errors import AuctionNotFound, AuctionNotLive, InvalidStateTransition

class AuctionStatus(Enum):
    LIVE = "LIVE"
    SETTLED = "SETTLED"
    RECLAIMED = "RECLAIMED"
    STOPPED = "STOPPED"
    REPAID = "REPAID"

@dataclass
class Auction:
    """Liquidation auction for one loan"""
    id: int
    loan_id: int
    recovery_amount: int
    duration: int
    start_time: int
    status: AuctionStatus = AuctionStatus.LIVE

    @property
    def end_time(self) -> int:
        return self.start_time + self.duration

    @property
    def is_live(self) -> bool:
        return self.status == AuctionStatus.LIVE

def dutch_auction_price(recovery_amount: int, collateral_amount: int,
                        duration: int, elapsed: int) -> Tuple[int, int]:
    """Return ``(bid_amount, collateral_offered)`` after ``elapsed`` seconds

    With midpoint ``m = duration / 2``: up to ``m`` the collateral offered is
    ``collateral * elapsed / m``; after it the bid is ``recovery * (duration - elapsed) / m``.
    Both are computed on doubled time so odd durations stay exact at the midpoint.
    """
    if elapsed < 0:
        raise ValueError("Elapsed time cannot be negative")
    if duration <= 0 or elapsed >= duration:
        return 0, 0
    if 2 * elapsed <= duration:
        return recovery_amount, collateral_amount * 2 * elapsed // duration
    return recovery_amount * 2 * (duration - elapsed) // duration, collateral_amount

class AuctionBook:
    """Auction records plus the loan-id to live-auction index"""

    def __init__(self):
        self.auctions: Dict[int, Auction] = {}
        self.loan_auctions: Dict[int, int] = {}  # loan_id -> live auction_id
        self.auction_counter = 0

    def open(self, loan_id: int, recovery_amount: int, duration: int, now: int) -> Auction:
        if loan_id in self.loan_auctions:
            raise InvalidStateTransition(f"Loan {loan_id} already has auction {self.loan_auctions[loan_id]}")

        self.auction_counter += 1
        auction = Auction(
            id=self.auction_counter,
            loan_id=loan_id,
            recovery_amount=recovery_amount,
            duration=duration,
            start_time=now
        )
        self.auctions[auction.id] = auction
        self.loan_auctions[loan_id] = auction.id
        return auction

    def get(self, auction_id: int) -> Auction:
        auction = self.auctions.get(auction_id)
        if auction is None:
            raise AuctionNotFound(f"Auction {auction_id} does not exist")
        return auction

    def get_live(self, auction_id: int) -> Auction:
        auction = self.get(auction_id)
        if not auction.is_live:
            raise AuctionNotLive(f"Auction {auction_id} is {auction.status.value}")
        return auction

    def view(self, auction_id: int) -> Auction:
        return replace(self.get(auction_id))

    def live_auction_for(self, loan_id: int) -> Optional[int]:
        return self.loan_auctions.get(loan_id)

    def close(self, auction_id: int, status: AuctionStatus) -> Auction:
        """Clear a live auction; its record and id are kept"""
        auction = self.get_live(auction_id)
        auction.status = status
        del self.loan_auctions[auction.loan_id]
        return auction
