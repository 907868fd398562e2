import unittest

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lending_contracts.engine import SmartContractVM, ManualClock
from lending_contracts.financial.token import ERC20Token

class TestERC20Token(unittest.TestCase):
    """Test cases for ERC20 Token contract"""

    def setUp(self):
        """Set up test fixtures"""
        self.vm = SmartContractVM(clock=ManualClock())
        self.token = ERC20Token(
            name="Test Token",
            symbol="TTK",
            decimals=18,
            initial_supply=1000000,
            owner="0x123"
        )
        self.address = self.vm.deploy_contract(self.token, "0x123")

    def send(self, caller, function_name, *args):
        return self.vm.transact(caller, self.address, function_name, *args).unwrap()

    def test_token_initialization(self):
        """Test initial supply is credited to the owner"""
        self.assertEqual(self.token.symbol, "TTK")
        self.assertEqual(self.token.total_supply, 1000000)
        self.assertEqual(self.token.balance_of("0x123"), 1000000)

    def test_transfer(self):
        """Test token transfer"""
        self.assertTrue(self.send("0x123", 'transfer', "0x456", 1000))

        self.assertEqual(self.token.balance_of("0x123"), 999000)
        self.assertEqual(self.token.balance_of("0x456"), 1000)

    def test_transfer_insufficient_balance(self):
        """Test transfer with insufficient balance moves nothing"""
        self.assertFalse(self.send("0x456", 'transfer', "0x789", 1))
        self.assertFalse(self.send("0x123", 'transfer', "0x789", 0))

        self.assertEqual(self.token.balance_of("0x789"), 0)
        self.assertEqual(self.token.balance_of("0x123"), 1000000)

    def test_allowance_and_transfer_from(self):
        """Test allowance and transferFrom functionality"""
        self.assertTrue(self.send("0x123", 'approve', "0x456", 5000))
        self.assertEqual(self.token.allowance("0x123", "0x456"), 5000)

        self.assertTrue(self.send("0x456", 'transfer_from', "0x123", "0x789", 2000))
        self.assertEqual(self.token.balance_of("0x789"), 2000)
        self.assertEqual(self.token.allowance("0x123", "0x456"), 3000)

        self.assertFalse(self.send("0x456", 'transfer_from', "0x123", "0x789", 3001))

    def test_failed_transfer_from_keeps_allowance(self):
        """Test allowance is only spent by a transfer that happens"""
        self.send("0x123", 'transfer', "0x456", 100)
        self.send("0x456", 'approve', "0x789", 500)

        self.assertFalse(self.send("0x789", 'transfer_from', "0x456", "0x789", 200))

        self.assertEqual(self.token.allowance("0x456", "0x789"), 500)
        self.assertEqual(self.token.balance_of("0x456"), 100)

    def test_minting(self):
        """Test token minting"""
        self.assertTrue(self.send("0x123", 'mint', "0x456", 5000))
        self.assertFalse(self.send("0x456", 'mint', "0x456", 5000))

        self.assertEqual(self.token.balance_of("0x456"), 5000)
        self.assertEqual(self.token.total_supply, 1005000)

    def test_approve_rejects_negative(self):
        """Test a negative allowance is refused and leaves the old one"""
        self.send("0x123", 'approve', "0x456", 100)
        self.assertFalse(self.send("0x123", 'approve', "0x456", -1))
        self.assertEqual(self.token.allowance("0x123", "0x456"), 100)

if __name__ == '__main__':
    unittest.main()
