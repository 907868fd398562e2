"""Collaborator callback protocol.

Lender callbacks gate the operation that triggers them: the lender must return the
acknowledgement token for the callback or the whole transaction reverts. Borrower
callbacks are notifications: they are only sent to borrowers that advertise the
borrower interface, and their failures are logged and rolled back without affecting
the caller.
"""

from typing import Any, Optional, Type
import hashlib
import logging
from dataclasses import dataclass

from ..engine import OutOfGasException
from .errors import HookFailed, LendingError

logger = logging.getLogger(__name__)

def selector(name: str) -> str:
    """Acknowledgement token for a callback name"""
    return hashlib.sha256(name.encode()).hexdigest()[:8]

VERIFY_LOAN_ACK = selector("verify_loan")
DEBT_CHANGED_ACK = selector("on_debt_changed")
COLLATERAL_CHANGED_ACK = selector("on_collateral_changed")
LOAN_SETTLED_ACK = selector("on_loan_settled")
FLASH_LOAN_ACK = selector("on_flash_loan")

BORROWER_HOOKS_INTERFACE = selector("on_loan_liquidated,on_loan_rebalanced,on_loan_settled")

class LenderHooks:
    """Callbacks a lender contract must implement"""

    def verify_loan(self, loan, data: bytes) -> str:
        """Approve a proposed loan by returning VERIFY_LOAN_ACK"""
        raise NotImplementedError

    def on_debt_changed(self, loan, amount: int) -> str:
        """Negative amount: borrowed more. Positive amount: repaid."""
        raise NotImplementedError

    def on_collateral_changed(self, loan, amount: int) -> str:
        raise NotImplementedError

    def on_loan_settled(self, loan, amount_recovered: int) -> str:
        raise NotImplementedError

class BorrowerHooks:
    """Optional notifications for borrower contracts"""

    def supports_interface(self, interface_id: str) -> bool:
        return interface_id == BORROWER_HOOKS_INTERFACE

    def on_loan_liquidated(self, loan, auction_id: Optional[int]):
        pass

    def on_loan_rebalanced(self, loan, debt_delta: int, collateral_delta: int):
        pass

    def on_loan_settled(self, loan, collateral_returned: int):
        pass

class FlashLoanReceiver:
    """Callback for flash loan receivers"""

    def on_flash_loan(self, initiator: str, asset: str, amount: int, data: bytes) -> str:
        """Use the funds and approve repayment, then return FLASH_LOAN_ACK"""
        raise NotImplementedError

@dataclass
class HookResult:
    """Outcome of a mandatory callback"""
    success: bool
    ack: Any = None
    error: Optional[str] = None
    exception: Optional[Exception] = None

class HookDispatcher:
    """Invokes collaborator callbacks on behalf of a contract"""

    def __init__(self, contract):
        self.contract = contract

    def invoke(self, target: str, method: str, expected_ack: str, *args) -> HookResult:
        """Call a mandatory callback and check its acknowledgement"""
        vm = self.contract.vm
        if vm is None or not vm.is_contract(target):
            return HookResult(False, error=f"{target} does not implement {method}")
        try:
            ack = self.contract._call(target, method, *args)
        except OutOfGasException:
            raise
        except Exception as e:
            return HookResult(False, error=f"{type(e).__name__}: {e}", exception=e)
        if ack != expected_ack:
            return HookResult(False, ack=ack, error=f"{method} returned {ack!r}, expected {expected_ack!r}")
        return HookResult(True, ack=ack)

    def require(self, target: str, method: str, expected_ack: str, *args,
                error_class: Type[LendingError] = HookFailed) -> HookResult:
        """Call a mandatory callback; any failure aborts the caller"""
        result = self.invoke(target, method, expected_ack, *args)
        if not result.success:
            logger.error(f"Callback {method} on {target} failed: {result.error}")
            raise error_class(result.error) from result.exception
        return result

    def notify(self, target: str, method: str, *args) -> None:
        """Best-effort notification to a borrower contract"""
        vm = self.contract.vm
        if vm is None or not vm.is_contract(target):
            return

        probe = self.contract._try_call(target, 'supports_interface', BORROWER_HOOKS_INTERFACE)
        if not probe.success or probe.return_data is not True:
            return

        result = self.contract._try_call(target, method, *args)
        if not result.success:
            logger.warning(f"Borrower notification {method} on {target} failed: {result.error}")
