"""Shared fixtures: a deployed market on a manual clock plus scriptable collaborators"""

import unittest

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lending_contracts import create_contract_engine, create_lending_market
from lending_contracts.engine import ManualClock, SmartContract
from lending_contracts.financial import (
    ERC20Token, LenderHooks, BorrowerHooks, FlashLoanReceiver, WAD,
    VERIFY_LOAN_ACK, DEBT_CHANGED_ACK, COLLATERAL_CHANGED_ACK, LOAN_SETTLED_ACK, FLASH_LOAN_ACK
)

START_TIME = 1700000000
UNIT = 10**18
ALLOWANCE = 10**30

OWNER = "0x0000000000000000000000000000000000000001"
ALICE = "0x000000000000000000000000000000000000a11c"  # borrower
BOB = "0x0000000000000000000000000000000000000b0b"  # bidder
CAROL = "0x00000000000000000000000000000000000ca401"

class RecordingLender(LenderHooks, SmartContract):
    """Lender that acknowledges every callback unless told otherwise"""

    def __init__(self, owner: str):
        super().__init__()
        self.owner = owner
        self.calls = []
        self.ack_overrides = {}
        self.reenter_on = None
        self.coordinator = None

    def approve(self, token: str, spender: str, amount: int) -> bool:
        self.coordinator = spender
        return self._call(token, 'approve', spender, amount)

    def set_ack(self, method: str, ack: str):
        self.ack_overrides[method] = ack

    def set_reenter(self, method: str):
        self.reenter_on = method

    def _respond(self, method: str, ack: str, *details) -> str:
        self.calls.append((method,) + details)
        if self.reenter_on == method:
            self._call(self.coordinator, 'accrue_index', 1)
        return self.ack_overrides.get(method, ack)

    def verify_loan(self, loan, data: bytes) -> str:
        return self._respond('verify_loan', VERIFY_LOAN_ACK, loan.id, data)

    def on_debt_changed(self, loan, amount: int) -> str:
        return self._respond('on_debt_changed', DEBT_CHANGED_ACK, loan.id, amount)

    def on_collateral_changed(self, loan, amount: int) -> str:
        return self._respond('on_collateral_changed', COLLATERAL_CHANGED_ACK, loan.id, amount)

    def on_loan_settled(self, loan, amount_recovered: int) -> str:
        return self._respond('on_loan_settled', LOAN_SETTLED_ACK, loan.id, amount_recovered)

class BorrowerAccount(BorrowerHooks, SmartContract):
    """Borrower contract that records notifications and can misbehave on request"""

    def __init__(self, coordinator: str, advertise: bool = True):
        super().__init__()
        self.coordinator = coordinator
        self.advertise = advertise
        self.notifications = []
        self.mode = None  # None, 'fail' or 'reenter'

    def supports_interface(self, interface_id: str) -> bool:
        return self.advertise and super().supports_interface(interface_id)

    def set_mode(self, mode):
        self.mode = mode

    def approve(self, token: str, amount: int) -> bool:
        return self._call(token, 'approve', self.coordinator, amount)

    def open_loan(self, lender: str, collateral_asset: str, debt_asset: str,
                  collateral_amount: int, debt_amount: int, term_id: int) -> int:
        return self._call(self.coordinator, 'create_loan', lender, self.address, collateral_asset,
                          debt_asset, collateral_amount, debt_amount, term_id, b'')

    def change_debt(self, loan_id: int, amount: int) -> int:
        return self._call(self.coordinator, 'change_debt', loan_id, self.address, amount)

    def change_collateral(self, loan_id: int, amount: int) -> int:
        return self._call(self.coordinator, 'change_collateral', loan_id, self.address, amount)

    def _record(self, *notification):
        self.notifications.append(notification)
        if self.mode == 'fail':
            raise RuntimeError("borrower hook failure")
        if self.mode == 'reenter':
            self._call(self.coordinator, 'change_debt', notification[1], self.address, 1)

    def on_loan_liquidated(self, loan, auction_id):
        self._record('on_loan_liquidated', loan.id, auction_id)

    def on_loan_rebalanced(self, loan, debt_delta: int, collateral_delta: int):
        self._record('on_loan_rebalanced', loan.id, debt_delta, collateral_delta)

    def on_loan_settled(self, loan, collateral_returned: int):
        self._record('on_loan_settled', loan.id, collateral_returned)

class FlashBorrower(FlashLoanReceiver, SmartContract):
    """Flash loan receiver; 'repay', 'keep' or 'wrong_ack' behaviour"""

    def __init__(self, coordinator: str):
        super().__init__()
        self.coordinator = coordinator
        self.behaviour = 'repay'
        self.seen = []

    def set_behaviour(self, behaviour: str):
        self.behaviour = behaviour

    def on_flash_loan(self, initiator: str, asset: str, amount: int, data: bytes) -> str:
        balance = self._call(asset, 'balance_of', self.address)
        self.seen.append((initiator, amount, balance))
        if self.behaviour == 'keep':
            return FLASH_LOAN_ACK
        self._call(asset, 'approve', self.coordinator, amount)
        if self.behaviour == 'wrong_ack':
            return "deadbeef"
        return FLASH_LOAN_ACK

class MarketTestCase(unittest.TestCase):
    """Coordinator, two tokens, a recording lender and a 1.5x / 100 second term"""

    LIQUIDATION_BONUS = 3 * WAD // 2
    AUCTION_LENGTH = 100
    FIXED_RATE = 0

    def setUp(self):
        self.clock = ManualClock(start=START_TIME)
        self.market = create_lending_market(create_contract_engine(self.clock), owner=OWNER)
        self.engine = self.market.engine
        self.coordinator_address = self.market.coordinator_address

        self.collateral = self.deploy(ERC20Token, ["Wrapped Ether", "WETH", 18, 0, OWNER])
        self.debt = self.deploy(ERC20Token, ["USD Coin", "USDC", 18, 0, OWNER])
        self.lender = self.deploy(RecordingLender, [OWNER])

        self.ok(OWNER, self.collateral, 'mint', ALICE, 100 * UNIT)
        self.ok(OWNER, self.debt, 'mint', ALICE, 100 * UNIT)
        self.ok(OWNER, self.debt, 'mint', BOB, 100 * UNIT)
        self.ok(OWNER, self.debt, 'mint', self.lender, 1000 * UNIT)
        self.ok(OWNER, self.lender, 'approve', self.debt, self.coordinator_address, ALLOWANCE)
        for account in (ALICE, BOB):
            self.ok(account, self.collateral, 'approve', self.coordinator_address, ALLOWANCE)
            self.ok(account, self.debt, 'approve', self.coordinator_address, ALLOWANCE)

        self.term_id = self.ok(OWNER, self.coordinator_address, 'set_term',
                               self.LIQUIDATION_BONUS, self.AUCTION_LENGTH, None, self.FIXED_RATE)

    @property
    def coordinator(self):
        return self.market.coordinator

    def deploy(self, contract_class, args):
        address, _ = self.engine.deploy_contract(contract_class, OWNER, args)
        return address

    def contract(self, address):
        return self.engine.get_contract(address)

    def send(self, caller, address, function_name, *args):
        return self.engine.call_contract(address, function_name, list(args), caller)

    def ok(self, caller, address, function_name, *args):
        receipt = self.send(caller, address, function_name, *args)
        if not receipt.success:
            self.fail(f"{function_name} reverted: {receipt.error}")
        return receipt.return_data

    def reverts(self, error_class, caller, address, function_name, *args):
        receipt = self.send(caller, address, function_name, *args)
        self.assertFalse(receipt.success, f"{function_name} unexpectedly succeeded")
        self.assertIsInstance(receipt.exception, error_class, receipt.error)
        return receipt

    def lend(self, function_name, caller, *args):
        return self.ok(caller, self.coordinator_address, function_name, *args)

    def open_loan(self, collateral_amount=UNIT, debt_amount=UNIT, term_id=None, borrower=ALICE):
        return self.lend('create_loan', borrower, self.lender, borrower, self.collateral, self.debt,
                         collateral_amount, debt_amount, term_id or self.term_id, b'')

    def balance(self, token, account):
        return self.contract(token).balance_of(account)

    def events(self, receipt):
        return [log['event'] for log in receipt.logs]
