from typing import Any, Dict, List, Optional, Tuple
import logging
from dataclasses import dataclass, replace
from enum import Enum

from ..engine import SmartContract, nonreentrant
from .auction import Auction, AuctionBook, AuctionStatus, dutch_auction_price
from .constants import WAD
from .errors import (
    FlashLoanFailed, InvalidAmount, InvalidBid, InvalidStateTransition, AuctionNotExpired,
    LoanNotFound, TermInTransition, TransferFailed, Unauthorized, VerificationFailed
)
from .hooks import (
    HookDispatcher, VERIFY_LOAN_ACK, DEBT_CHANGED_ACK, COLLATERAL_CHANGED_ACK,
    LOAN_SETTLED_ACK, FLASH_LOAN_ACK
)
from .interest import Term, TermRegistry, interest_owed

logger = logging.getLogger(__name__)

class LoanState(Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    LIQUIDATING = "LIQUIDATING"

@dataclass
class Loan:
    """Loan structure"""
    id: int
    term_id: int
    borrower: str
    lender: str
    collateral_asset: str
    collateral_amount: int
    debt_asset: str
    debt_amount: int  # principal plus interest folded in at the last touch
    user_borrow_index: int
    last_update_time: int
    state: LoanState = LoanState.ACTIVE

class BorrowerIndex:
    """Unordered borrower -> loan ids lists with O(1) swap-remove"""

    def __init__(self):
        self.loans: Dict[str, List[int]] = {}
        self.positions: Dict[int, int] = {}  # loan_id -> position in its borrower's list

    def add(self, borrower: str, loan_id: int):
        loan_ids = self.loans.setdefault(borrower, [])
        self.positions[loan_id] = len(loan_ids)
        loan_ids.append(loan_id)

    def remove(self, borrower: str, loan_id: int):
        loan_ids = self.loans[borrower]
        position = self.positions.pop(loan_id)
        last = loan_ids.pop()
        if last != loan_id:
            loan_ids[position] = last
            self.positions[last] = position

    def get(self, borrower: str) -> List[int]:
        return list(self.loans.get(borrower, []))

class LendingCoordinator(SmartContract):
    """Peer-to-peer collateralized lending with Dutch auction liquidation

    Collateral is escrowed by this contract for the life of a loan. Debt flows
    directly between lender and borrower. Interest accrues per term through a borrow
    index; a lender can put a loan up for auction, and anyone can fill the auction at
    the current two-phase price.
    """

    def __init__(self, owner: str = ""):
        super().__init__()

        self.owner = owner

        # Core data structures
        self.terms = TermRegistry()
        self.loans: Dict[int, Loan] = {}
        self.loan_counter = 0
        self.auctions = AuctionBook()
        self.borrower_index = BorrowerIndex()
        self.hooks = HookDispatcher(self)

    # ------------------------------------------------------------------
    # Terms and interest
    # ------------------------------------------------------------------

    @nonreentrant
    def set_term(self, liquidation_bonus: int, auction_length: int,
                 rate_source: Optional[str] = None, fixed_rate: int = 0) -> int:
        """Register a new loan term; the caller becomes its owner"""
        caller = self._get_caller()
        term = self.terms.add(caller, liquidation_bonus, auction_length, self._now(),
                              rate_source=rate_source, fixed_rate=fixed_rate)

        self._emit_event('TermCreated', {
            'term_id': term.id,
            'owner': caller,
            'liquidation_bonus': liquidation_bonus,
            'auction_length': auction_length,
            'rate_source': rate_source,
            'fixed_rate': fixed_rate
        })
        logger.info(f"Term {term.id} created by {caller}")

        return term.id

    @nonreentrant
    def set_term_rate(self, term_id: int, fixed_rate: int) -> bool:
        """Schedule a new fixed rate for a term (term owner only)

        Interest up to now is accrued at the current rate. Until the index is accrued
        at a later instant the term is in transition and cannot back new loans.
        """
        self._accrue(term_id)
        self.terms.schedule_rate(term_id, self._get_caller(), fixed_rate)

        self._emit_event('TermRateScheduled', {
            'term_id': term_id,
            'fixed_rate': fixed_rate
        })

        return True

    @nonreentrant
    def accrue_index(self, term_id: int) -> int:
        """Bring a term's borrow index up to the current instant"""
        return self._accrue(term_id)

    def _accrue(self, term_id: int) -> int:
        return self.terms.accrue(term_id, self._now(), self._term_rate)

    def _term_rate(self, term_id: int, term: Term, elapsed: int) -> int:
        return self._call(term.rate_source, 'rate', term_id, elapsed)

    def _touch(self, loan: Loan) -> int:
        """Refresh the term index, then fold the loan's interest into its debt"""
        index = self._accrue(loan.term_id)
        now = self._now()
        if loan.last_update_time >= now:
            return 0

        interest = interest_owed(loan.debt_amount, loan.user_borrow_index, index)
        loan.debt_amount += interest
        loan.user_borrow_index = index
        loan.last_update_time = now
        return interest

    def get_accrued_interest(self, loan_id: int) -> int:
        """Interest the loan has accrued since it was last touched"""
        loan = self._get_loan(loan_id)
        now = self._now()
        if loan.state == LoanState.INACTIVE or loan.last_update_time >= now:
            return 0

        index = self.terms.projected_index(loan.term_id, now, self._term_rate)
        return interest_owed(loan.debt_amount, loan.user_borrow_index, index)

    # ------------------------------------------------------------------
    # Loan lifecycle
    # ------------------------------------------------------------------

    @nonreentrant
    def create_loan(self, lender: str, borrower: str, collateral_asset: str, debt_asset: str,
                    collateral_amount: int, debt_amount: int, term_id: int,
                    data: bytes = b'') -> int:
        """Open a loan backed by escrowed collateral"""
        caller = self._get_caller()
        if caller != borrower:
            raise Unauthorized("Only the borrower may open a loan")
        if collateral_amount <= 0 or debt_amount <= 0:
            raise InvalidAmount("Collateral and debt amounts must be positive")

        term = self.terms.get(term_id)
        if term.in_transition:
            raise TermInTransition(f"Term {term_id} has a pending rate change")
        index = self._accrue(term_id)

        self.loan_counter += 1
        loan = Loan(
            id=self.loan_counter,
            term_id=term_id,
            borrower=borrower,
            lender=lender,
            collateral_asset=collateral_asset,
            collateral_amount=collateral_amount,
            debt_asset=debt_asset,
            debt_amount=debt_amount,
            user_borrow_index=index,
            last_update_time=self._now()
        )
        self.loans[loan.id] = loan
        self.borrower_index.add(borrower, loan.id)

        self.hooks.require(lender, 'verify_loan', VERIFY_LOAN_ACK, replace(loan), data,
                           error_class=VerificationFailed)

        self._pull(collateral_asset, borrower, self.address, collateral_amount)
        self._pull(debt_asset, lender, borrower, debt_amount)

        self._emit_event('LoanCreated', {
            'loan_id': loan.id,
            'term_id': term_id,
            'borrower': borrower,
            'lender': lender,
            'collateral_asset': collateral_asset,
            'collateral_amount': collateral_amount,
            'debt_asset': debt_asset,
            'debt_amount': debt_amount
        })
        logger.info(f"Loan {loan.id} created: {debt_amount} {debt_asset} against "
                    f"{collateral_amount} {collateral_asset}")

        return loan.id

    @nonreentrant
    def change_debt(self, loan_id: int, on_behalf_of: str, amount: int) -> int:
        """Borrow more (negative amount) or repay (positive amount)

        Borrowed funds go to ``on_behalf_of``; repayments are pulled from the caller
        and capped at the outstanding debt. Repaying the whole debt closes the loan,
        cancels any live auction and releases the collateral to the borrower. While
        the loan is being auctioned only a full repayment is accepted.

        Returns the signed amount actually applied.
        """
        loan = self._get_open_loan(loan_id)
        if amount == 0:
            raise InvalidAmount("Debt change cannot be zero")
        caller = self._get_caller()

        self._touch(loan)

        if amount < 0:
            if caller != loan.borrower:
                raise Unauthorized("Only the borrower may borrow more")
            if loan.state == LoanState.LIQUIDATING:
                raise InvalidStateTransition(f"Loan {loan_id} is being liquidated")
            borrowed = -amount
            loan.debt_amount += borrowed

            self._pull(loan.debt_asset, loan.lender, on_behalf_of, borrowed)
            applied = amount
            collateral_released = 0
        else:
            outstanding = loan.debt_amount
            repaid = min(amount, outstanding)
            full_repayment = repaid == outstanding
            if loan.state == LoanState.LIQUIDATING and not full_repayment:
                raise InvalidStateTransition(
                    f"Loan {loan_id} is being liquidated; only full repayment of {outstanding} is accepted"
                )

            loan.debt_amount -= repaid
            collateral_released = 0
            if full_repayment:
                auction_id = self.auctions.live_auction_for(loan_id)
                if auction_id is not None:
                    self.auctions.close(auction_id, AuctionStatus.REPAID)
                collateral_released = self._close_loan(loan)

            self._pull(loan.debt_asset, caller, loan.lender, repaid)
            if collateral_released:
                self._push(loan.collateral_asset, loan.borrower, collateral_released)
            applied = repaid

        self.hooks.require(loan.lender, 'on_debt_changed', DEBT_CHANGED_ACK, replace(loan), applied)

        self._emit_event('DebtChanged', {
            'loan_id': loan_id,
            'caller': caller,
            'on_behalf_of': on_behalf_of,
            'amount': applied,
            'debt_amount': loan.debt_amount,
            'state': loan.state.value
        })
        if loan.state == LoanState.INACTIVE:
            self._emit_event('LoanRepaid', {'loan_id': loan_id, 'collateral_released': collateral_released})
            logger.info(f"Loan {loan_id} repaid in full")

        self.hooks.notify(loan.borrower, 'on_loan_rebalanced', replace(loan), -applied, 0)
        return applied

    @nonreentrant
    def change_collateral(self, loan_id: int, on_behalf_of: str, amount: int) -> int:
        """Post more collateral (positive amount) or withdraw it (negative, borrower only)"""
        loan = self._get_open_loan(loan_id)
        if amount == 0:
            raise InvalidAmount("Collateral change cannot be zero")
        if loan.state == LoanState.LIQUIDATING:
            raise InvalidStateTransition(f"Collateral of loan {loan_id} backs a live auction")
        caller = self._get_caller()

        self._touch(loan)

        if amount > 0:
            loan.collateral_amount += amount
            self._pull(loan.collateral_asset, caller, self.address, amount)
        else:
            if caller != loan.borrower:
                raise Unauthorized("Only the borrower may withdraw collateral")
            withdrawn = -amount
            if withdrawn > loan.collateral_amount:
                raise InvalidAmount(
                    f"Cannot withdraw {withdrawn}; loan {loan_id} holds {loan.collateral_amount}"
                )
            loan.collateral_amount -= withdrawn
            self._push(loan.collateral_asset, on_behalf_of, withdrawn)

        self.hooks.require(loan.lender, 'on_collateral_changed', COLLATERAL_CHANGED_ACK, replace(loan), amount)

        self._emit_event('CollateralChanged', {
            'loan_id': loan_id,
            'caller': caller,
            'on_behalf_of': on_behalf_of,
            'amount': amount,
            'collateral_amount': loan.collateral_amount
        })

        self.hooks.notify(loan.borrower, 'on_loan_rebalanced', replace(loan), 0, amount)
        return loan.collateral_amount

    # ------------------------------------------------------------------
    # Liquidation and auctions
    # ------------------------------------------------------------------

    @nonreentrant
    def liquidate(self, loan_id: int) -> Optional[int]:
        """Start liquidating a loan (lender only)

        Returns the new auction id, or None when the term has no auction and the
        collateral was seized by the lender outright.
        """
        loan = self._get_open_loan(loan_id)
        if self._get_caller() != loan.lender:
            raise Unauthorized("Only the lender may liquidate")
        if loan.state != LoanState.ACTIVE:
            raise InvalidStateTransition(f"Loan {loan_id} is already being liquidated")

        self._touch(loan)
        term = self.terms.get(loan.term_id)
        recovery_amount = loan.debt_amount * term.liquidation_bonus // WAD

        if term.auction_length == 0:
            seized = self._close_loan(loan)
            self._push(loan.collateral_asset, loan.lender, seized)

            self._emit_event('CollateralSeized', {
                'loan_id': loan_id,
                'lender': loan.lender,
                'collateral_amount': seized
            })
            logger.info(f"Loan {loan_id} collateral seized without auction")

            self.hooks.notify(loan.borrower, 'on_loan_liquidated', replace(loan), None)
            return None

        auction = self.auctions.open(loan_id, recovery_amount, term.auction_length, self._now())
        loan.state = LoanState.LIQUIDATING

        self._emit_event('AuctionStarted', {
            'auction_id': auction.id,
            'loan_id': loan_id,
            'recovery_amount': recovery_amount,
            'duration': auction.duration,
            'start_time': auction.start_time
        })
        logger.info(f"Loan {loan_id} liquidating through auction {auction.id}")

        self.hooks.notify(loan.borrower, 'on_loan_liquidated', replace(loan), auction.id)
        return auction.id

    def get_auction_price(self, auction_id: int) -> Tuple[int, int]:
        """Current ``(bid_amount, collateral_offered)`` of a live auction"""
        auction = self.auctions.get_live(auction_id)
        return self._price(auction, self._get_loan(auction.loan_id))

    def _price(self, auction: Auction, loan: Loan) -> Tuple[int, int]:
        return dutch_auction_price(
            auction.recovery_amount,
            loan.collateral_amount,
            auction.duration,
            self._now() - auction.start_time
        )

    @nonreentrant
    def bid(self, auction_id: int) -> Tuple[int, int]:
        """Fill an auction at its current price"""
        auction = self.auctions.get_live(auction_id)
        loan = self._get_loan(auction.loan_id)
        bid_amount, collateral_offered = self._price(auction, loan)
        if bid_amount == 0 or collateral_offered == 0:
            raise InvalidBid(
                f"Auction {auction_id} price is ({bid_amount}, {collateral_offered}); bidding is closed"
            )
        bidder = self._get_caller()

        self.auctions.close(auction_id, AuctionStatus.SETTLED)
        collateral = self._close_loan(loan)
        borrower_return = collateral - collateral_offered

        self._pull(loan.debt_asset, bidder, loan.lender, bid_amount)
        self._push(loan.collateral_asset, bidder, collateral_offered)
        if borrower_return > 0:
            self._push(loan.collateral_asset, loan.borrower, borrower_return)

        self.hooks.require(loan.lender, 'on_loan_settled', LOAN_SETTLED_ACK, replace(loan), bid_amount)

        self._emit_event('AuctionSettled', {
            'auction_id': auction_id,
            'loan_id': loan.id,
            'bidder': bidder,
            'bid_amount': bid_amount,
            'collateral_offered': collateral_offered,
            'borrower_return': borrower_return
        })
        logger.info(f"Auction {auction_id} settled: {bid_amount} paid for {collateral_offered} collateral")

        self.hooks.notify(loan.borrower, 'on_loan_settled', replace(loan), borrower_return)
        return bid_amount, collateral_offered

    @nonreentrant
    def reclaim(self, auction_id: int) -> int:
        """Hand the whole collateral of a lapsed auction to the lender"""
        auction = self.auctions.get_live(auction_id)
        if self._now() < auction.end_time:
            raise AuctionNotExpired(f"Auction {auction_id} runs until {auction.end_time}")
        loan = self._get_loan(auction.loan_id)

        self.auctions.close(auction_id, AuctionStatus.RECLAIMED)
        collateral = self._close_loan(loan)
        self._push(loan.collateral_asset, loan.lender, collateral)

        self.hooks.require(loan.lender, 'on_loan_settled', LOAN_SETTLED_ACK, replace(loan), 0)

        self._emit_event('AuctionReclaimed', {
            'auction_id': auction_id,
            'loan_id': loan.id,
            'lender': loan.lender,
            'collateral_amount': collateral
        })
        logger.info(f"Auction {auction_id} lapsed; {collateral} collateral reclaimed by lender")

        self.hooks.notify(loan.borrower, 'on_loan_settled', replace(loan), 0)
        return collateral

    @nonreentrant
    def stop_auction(self, auction_id: int) -> bool:
        """Cancel a live auction and return the loan to active (lender only)"""
        auction = self.auctions.get_live(auction_id)
        loan = self._get_loan(auction.loan_id)
        if self._get_caller() != loan.lender:
            raise Unauthorized("Only the lender may stop an auction")

        self.auctions.close(auction_id, AuctionStatus.STOPPED)
        loan.state = LoanState.ACTIVE

        self._emit_event('AuctionStopped', {'auction_id': auction_id, 'loan_id': loan.id})
        logger.info(f"Auction {auction_id} stopped; loan {loan.id} active again")

        return True

    # ------------------------------------------------------------------
    # Flash loans
    # ------------------------------------------------------------------

    @nonreentrant
    def flash_loan(self, receiver: str, asset: str, amount: int, data: bytes = b'') -> bool:
        """Lend escrowed assets for the duration of one callback"""
        if amount <= 0:
            raise InvalidAmount("Flash loan amount must be positive")
        initiator = self._get_caller()

        self._push(asset, receiver, amount)
        self.hooks.require(receiver, 'on_flash_loan', FLASH_LOAN_ACK, initiator, asset, amount, data,
                           error_class=FlashLoanFailed)
        self._pull(asset, receiver, self.address, amount)

        self._emit_event('FlashLoan', {
            'initiator': initiator,
            'receiver': receiver,
            'asset': asset,
            'amount': amount
        })

        return True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_loan(self, loan_id: int, include_pending_interest: bool = False) -> Loan:
        """Copy of a loan, optionally with pending interest added to its debt"""
        loan = replace(self._get_loan(loan_id))
        if include_pending_interest:
            loan.debt_amount += self.get_accrued_interest(loan_id)
        return loan

    def get_auction(self, auction_id: int) -> Auction:
        return self.auctions.view(auction_id)

    def get_term(self, term_id: int) -> Term:
        return self.terms.view(term_id)

    def get_loan_auction(self, loan_id: int) -> Optional[int]:
        """Live auction id for a loan, if any"""
        self._get_loan(loan_id)
        return self.auctions.live_auction_for(loan_id)

    def get_borrower_loans(self, borrower: str) -> List[int]:
        """Open loans of a borrower, in no particular order"""
        return self.borrower_index.get(borrower)

    def get_coordinator_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics"""
        states = [loan.state for loan in self.loans.values()]
        return {
            'total_loans': len(self.loans),
            'active_loans': states.count(LoanState.ACTIVE),
            'liquidating_loans': states.count(LoanState.LIQUIDATING),
            'closed_loans': states.count(LoanState.INACTIVE),
            'live_auctions': len(self.auctions.loan_auctions),
            'total_auctions': len(self.auctions.auctions),
            'total_terms': len(self.terms)
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_loan(self, loan_id: int) -> Loan:
        loan = self.loans.get(loan_id)
        if loan is None:
            raise LoanNotFound(f"Loan {loan_id} does not exist")
        return loan

    def _get_open_loan(self, loan_id: int) -> Loan:
        loan = self._get_loan(loan_id)
        if loan.state == LoanState.INACTIVE:
            raise InvalidStateTransition(f"Loan {loan_id} is closed")
        return loan

    def _close_loan(self, loan: Loan) -> int:
        """Mark a loan inactive and return the collateral it held in escrow"""
        collateral = loan.collateral_amount
        loan.state = LoanState.INACTIVE
        loan.collateral_amount = 0
        loan.debt_amount = 0
        self.borrower_index.remove(loan.borrower, loan.id)
        return collateral

    def _pull(self, asset: str, from_address: str, to: str, amount: int):
        if amount <= 0:
            return
        if self._call(asset, 'transfer_from', from_address, to, amount) is not True:
            raise TransferFailed(f"Could not move {amount} of {asset} from {from_address} to {to}")

    def _push(self, asset: str, to: str, amount: int):
        if amount <= 0:
            return
        if self._call(asset, 'transfer', to, amount) is not True:
            raise TransferFailed(f"Could not send {amount} of {asset} to {to}")
