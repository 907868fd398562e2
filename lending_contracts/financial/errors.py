"""Lending error taxonomy.

Every error aborts the transaction it is raised in; the VM rolls back all state and
token movements of that transaction.
"""

from ..engine import VMException

class LendingError(VMException):
    """Base class for coordinator failures"""
    pass

class VerificationFailed(LendingError):
    """The lender did not approve a proposed loan"""
    pass

class Unauthorized(LendingError):
    """Caller is not allowed to perform the operation"""
    pass

class InvalidStateTransition(LendingError):
    """Operation is not allowed in the loan's current state"""
    pass

class TermInTransition(InvalidStateTransition):
    """Term has a scheduled rate change that has not been applied yet"""
    pass

class AuctionTimingError(LendingError):
    """Auction operation attempted at the wrong time"""
    pass

class AuctionNotLive(AuctionTimingError):
    pass

class AuctionNotExpired(AuctionTimingError):
    pass

class InvalidBid(AuctionTimingError):
    """One side of the current auction price is zero"""
    pass

class InvalidTerms(LendingError):
    pass

class InvalidAmount(LendingError):
    pass

class HookFailed(LendingError):
    """A mandatory collaborator callback failed or returned the wrong acknowledgement"""
    pass

class FlashLoanFailed(HookFailed):
    pass

class TransferFailed(LendingError):
    """Asset custody refused a transfer"""
    pass

class LoanNotFound(LendingError):
    pass

class AuctionNotFound(LendingError):
    pass

class TermNotFound(LendingError):
    pass
