"""Loan terms and borrow-index accrual.

Each term carries a borrow index that starts at 1.0 (``WAD``) and grows by
``elapsed * rate`` whenever it is touched at a new instant. The index is the
cumulative interest owed per unit of debt since the term was created, so a loan that
snapshotted the index at ``i0`` owes ``debt * (i1 - i0) / WAD`` once the index has
reached ``i1``.
"""

from typing import Callable, Dict, Optional, Tuple
import logging
from dataclasses import dataclass, replace

from .constants import (
    WAD, MIN_LIQUIDATION_BONUS, MAX_LIQUIDATION_BONUS, MAX_AUCTION_LENGTH
)
from .errors import InvalidTerms, TermNotFound, Unauthorized

logger = logging.getLogger(__name__)

# (term_id, term, elapsed_seconds) -> per-second rate in WAD
RateLookup = Callable[[int, 'Term', int], int]

@dataclass
class Term:
    """Reusable loan configuration shared by many loans"""
    id: int
    owner: str
    liquidation_bonus: int  # WAD, 1.0x to 2.0x
    auction_length: int  # seconds, 0 means instant seizure
    last_update_time: int
    base_borrow_index: int = WAD
    rate_source: Optional[str] = None  # rate source contract address
    fixed_rate: int = 0  # per-second rate in WAD, used when no source is set
    pending_rate: Optional[int] = None

    @property
    def in_transition(self) -> bool:
        return self.pending_rate is not None

def validate_term(liquidation_bonus: int, auction_length: int, fixed_rate: int = 0):
    """Raise InvalidTerms unless the parameters are inside the configured bounds"""
    if not MIN_LIQUIDATION_BONUS <= liquidation_bonus <= MAX_LIQUIDATION_BONUS:
        raise InvalidTerms(
            f"Liquidation bonus {liquidation_bonus} outside "
            f"[{MIN_LIQUIDATION_BONUS}, {MAX_LIQUIDATION_BONUS}]"
        )
    if not 0 <= auction_length <= MAX_AUCTION_LENGTH:
        raise InvalidTerms(f"Auction length {auction_length} outside [0, {MAX_AUCTION_LENGTH}]")
    if fixed_rate < 0:
        raise InvalidTerms(f"Fixed rate {fixed_rate} is negative")

def interest_owed(debt_amount: int, user_borrow_index: int, current_index: int) -> int:
    """Interest on a debt between two index observations, rounded down"""
    if current_index <= user_borrow_index:
        return 0
    return debt_amount * (current_index - user_borrow_index) // WAD

class TermRegistry:
    """Append-only set of terms with lazily refreshed borrow indices"""

    def __init__(self):
        self.terms: Dict[int, Term] = {}
        self.term_counter = 0

    def __len__(self) -> int:
        return len(self.terms)

    def add(self, owner: str, liquidation_bonus: int, auction_length: int, now: int,
            rate_source: Optional[str] = None, fixed_rate: int = 0) -> Term:
        validate_term(liquidation_bonus, auction_length, fixed_rate)

        self.term_counter += 1
        term = Term(
            id=self.term_counter,
            owner=owner,
            liquidation_bonus=liquidation_bonus,
            auction_length=auction_length,
            last_update_time=now,
            rate_source=rate_source,
            fixed_rate=fixed_rate
        )
        self.terms[term.id] = term
        return term

    def get(self, term_id: int) -> Term:
        term = self.terms.get(term_id)
        if term is None:
            raise TermNotFound(f"Term {term_id} does not exist")
        return term

    def view(self, term_id: int) -> Term:
        """Detached copy of a term"""
        return replace(self.get(term_id))

    def schedule_rate(self, term_id: int, caller: str, fixed_rate: int):
        """Queue a new fixed rate; it replaces the rate source at the next accrual"""
        term = self.get(term_id)
        if caller != term.owner:
            raise Unauthorized(f"Only the term owner may change term {term_id}")
        if fixed_rate < 0:
            raise InvalidTerms(f"Fixed rate {fixed_rate} is negative")
        term.pending_rate = fixed_rate

    def accrue(self, term_id: int, now: int, rate_lookup: RateLookup) -> int:
        """Advance the term's index to ``now``; a no-op within the same instant"""
        term = self.get(term_id)
        if term.last_update_time >= now:
            return term.base_borrow_index

        rate, elapsed = self._growth(term, now, rate_lookup)
        term.base_borrow_index += elapsed * rate
        term.last_update_time = now

        # The gap is charged at the old rate; a scheduled rate starts from here
        if term.pending_rate is not None:
            term.fixed_rate = term.pending_rate
            term.rate_source = None
            term.pending_rate = None
            logger.info(f"Term {term_id} switched to fixed rate {term.fixed_rate}")
        return term.base_borrow_index

    def projected_index(self, term_id: int, now: int, rate_lookup: RateLookup) -> int:
        """Index the term would have if accrued at ``now``, without storing it"""
        term = self.get(term_id)
        if term.last_update_time >= now:
            return term.base_borrow_index
        rate, elapsed = self._growth(term, now, rate_lookup)
        return term.base_borrow_index + elapsed * rate

    def _growth(self, term: Term, now: int, rate_lookup: RateLookup) -> Tuple[int, int]:
        elapsed = now - term.last_update_time
        if term.rate_source is None:
            rate = term.fixed_rate
        else:
            rate = rate_lookup(term.id, term, elapsed)
        if rate < 0:
            raise InvalidTerms(f"Rate source returned negative rate {rate} for term {term.id}")
        return rate, elapsed
