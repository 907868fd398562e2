import unittest
import time

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import jwt

from tests.helpers import MarketTestCase, ALICE, BOB, CAROL, UNIT

from api.accounts import AccountRegistry, MAX_FAILED_ATTEMPTS
from api.rest_api import LendingAPI, error_status, serialize
from lending_contracts.financial import (
    AuctionNotLive, InvalidTerms, LendingError, LoanNotFound, Unauthorized, WAD
)

SECRET_KEY = 'test-secret'
PASSWORDS = {ALICE: 'alice-password', BOB: 'bob-password'}

class TestErrorMapping(unittest.TestCase):
    """Test cases for reverted transaction status codes"""

    def test_error_status(self):
        """Test lending errors map onto HTTP statuses"""
        self.assertEqual(error_status(Unauthorized("no")), 403)
        self.assertEqual(error_status(LoanNotFound("no")), 404)
        self.assertEqual(error_status(InvalidTerms("no")), 400)
        self.assertEqual(error_status(AuctionNotLive("no")), 409)
        self.assertEqual(error_status(LendingError("no")), 409)
        self.assertEqual(error_status(ValueError("no")), 500)
        self.assertEqual(error_status(None), 500)

class TestLendingAPI(MarketTestCase):
    """Test cases for the REST API"""

    def setUp(self):
        super().setUp()
        self.api = LendingAPI(engine=self.engine, coordinator_address=self.coordinator_address,
                              secret_key=SECRET_KEY, token_ttl=60, accounts=AccountRegistry(rounds=4))
        self.passwords = dict(PASSWORDS)
        self.passwords[self.lender] = 'lender-password'
        for address, password in self.passwords.items():
            self.api.register_account(address, password)
        self.client = self.api.app.test_client()

    def login(self, address, password=None):
        return self.client.post('/api/auth/token', json={
            'address': address,
            'password': password or self.passwords.get(address, 'not-a-password')
        })

    def auth(self, address):
        response = self.login(address)
        self.assertEqual(response.status_code, 200)
        return {'Authorization': f"Bearer {response.get_json()['token']}"}

    def create_loan(self, caller=ALICE, **overrides):
        payload = {
            'lender': self.lender,
            'collateral_asset': self.collateral,
            'debt_asset': self.debt,
            'collateral_amount': str(2 * UNIT),
            'debt_amount': str(UNIT),
            'term_id': self.term_id
        }
        payload.update(overrides)
        return self.client.post('/api/loans', json=payload, headers=self.auth(caller))

    def test_token_issuance(self):
        """Test bearer tokens carry the account address"""
        data = self.login(ALICE).get_json()

        self.assertEqual(data['expires_in'], 60)
        payload = jwt.decode(data['token'], SECRET_KEY, algorithms=['HS256'])
        self.assertEqual(payload['sub'], ALICE)

        self.assertEqual(self.client.post('/api/auth/token', json={'address': ALICE}).status_code, 400)

    def test_token_requires_credentials(self):
        """Test tokens are only issued for provisioned accounts with the right password"""
        self.assertEqual(self.login(ALICE, 'bob-password').status_code, 401)
        self.assertEqual(self.login(self.lender, 'alice-password').status_code, 401)
        self.assertEqual(self.login(CAROL).status_code, 401)
        self.assertEqual(self.login(CAROL).get_json()['error'], 'Invalid credentials')

        loan_id = self.create_loan().get_json()['result']
        self.assertEqual(self.client.post(f'/api/loans/{loan_id}/liquidate').status_code, 401)
        self.assertEqual(self.coordinator.get_loan(loan_id).state.value, 'ACTIVE')

    def test_repeated_failures_lock_account(self):
        """Test an account locks after too many wrong passwords"""
        for _ in range(MAX_FAILED_ATTEMPTS):
            self.assertEqual(self.login(BOB, 'wrong-password').status_code, 401)

        self.assertEqual(self.login(BOB).status_code, 401)
        self.assertEqual(self.login(ALICE).status_code, 200)

    def test_register_account_validation(self):
        """Test duplicate and weak credentials are refused"""
        with self.assertRaises(ValueError):
            self.api.register_account(ALICE, 'another-password')
        with self.assertRaises(ValueError):
            self.api.register_account(CAROL, 'short')
        self.assertNotIn(CAROL, self.api.accounts)

    def test_authentication_required(self):
        """Test write endpoints reject missing, forged and expired tokens"""
        self.assertEqual(self.client.post('/api/terms', json={}).status_code, 401)

        forged = jwt.encode({'sub': ALICE}, 'wrong-secret', algorithm='HS256')
        response = self.client.post('/api/terms', json={}, headers={'Authorization': f"Bearer {forged}"})
        self.assertEqual(response.status_code, 401)

        expired = jwt.encode({'sub': ALICE, 'exp': int(time.time()) - 10}, SECRET_KEY, algorithm='HS256')
        response = self.client.post('/api/terms', json={}, headers={'Authorization': f"Bearer {expired}"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()['error'], 'Token has expired')

    def test_term_endpoints(self):
        """Test creating, reading and accruing terms"""
        response = self.client.post('/api/terms', headers=self.auth(BOB), json={
            'liquidation_bonus': str(WAD),
            'auction_length': 3600,
            'fixed_rate': 5
        })
        self.assertEqual(response.status_code, 200)
        term_id = response.get_json()['result']
        self.assertEqual(term_id, self.term_id + 1)

        term = self.client.get(f'/api/terms/{term_id}').get_json()
        self.assertEqual(term['owner'], BOB)
        self.assertEqual(term['liquidation_bonus'], str(WAD))
        self.assertEqual(term['auction_length'], 3600)
        self.assertIsNone(term['pending_rate'])

        self.clock.advance(10)
        response = self.client.post(f'/api/terms/{term_id}/accrue', headers=self.auth(BOB))
        self.assertEqual(response.get_json()['result'], str(WAD + 50))

        self.assertEqual(self.client.get('/api/terms/99').status_code, 404)

    def test_invalid_term(self):
        """Test bound violations and malformed input are client errors"""
        headers = self.auth(BOB)
        response = self.client.post('/api/terms', headers=headers, json={
            'liquidation_bonus': str(3 * WAD),
            'auction_length': 100
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error_type'], 'InvalidTerms')

        response = self.client.post('/api/terms', headers=headers, json={'liquidation_bonus': 'lots'})
        self.assertEqual(response.status_code, 400)

    def test_loan_lifecycle(self):
        """Test opening, reading and repaying a loan"""
        response = self.create_loan()
        self.assertEqual(response.status_code, 200, response.get_json())
        loan_id = response.get_json()['result']
        self.assertIn('LoanCreated', response.get_json()['events'])

        loan = self.client.get(f'/api/loans/{loan_id}').get_json()
        self.assertEqual(loan['state'], 'ACTIVE')
        self.assertEqual(loan['borrower'], ALICE)
        self.assertEqual(loan['debt_amount'], str(UNIT))
        self.assertEqual(loan['collateral_amount'], str(2 * UNIT))
        self.assertIsNone(loan['auction_id'])
        self.assertEqual(self.client.get(f'/api/borrowers/{ALICE}/loans').get_json()['loan_ids'], [loan_id])

        response = self.client.post(f'/api/loans/{loan_id}/debt', headers=self.auth(ALICE),
                                    json={'amount': str(UNIT)})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['result'], str(UNIT))

        loan = self.client.get(f'/api/loans/{loan_id}').get_json()
        self.assertEqual(loan['state'], 'INACTIVE')

        response = self.client.post(f'/api/loans/{loan_id}/collateral', headers=self.auth(ALICE),
                                    json={'amount': '1'})
        self.assertEqual(response.status_code, 409)

    def test_loan_errors(self):
        """Test authorization, validation and missing loans"""
        response = self.create_loan(caller=BOB, borrower=ALICE)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()['error_type'], 'Unauthorized')

        response = self.client.post('/api/loans', headers=self.auth(ALICE), json={'lender': self.lender})
        self.assertEqual(response.status_code, 400)
        self.assertIn('Missing required fields', response.get_json()['error'])

        self.assertEqual(self.client.get('/api/loans/99').status_code, 404)

        response = self.client.post('/api/loans/1/refinance', headers=self.auth(ALICE), json={'amount': '1'})
        self.assertEqual(response.status_code, 400)

    def test_auction_flow(self):
        """Test liquidation, pricing and bidding over HTTP"""
        loan_id = self.create_loan().get_json()['result']

        response = self.client.post(f'/api/loans/{loan_id}/liquidate', headers=self.auth(ALICE))
        self.assertEqual(response.status_code, 403)

        response = self.client.post(f'/api/loans/{loan_id}/liquidate', headers=self.auth(self.lender))
        self.assertEqual(response.status_code, 200)
        auction_id = response.get_json()['result']

        self.clock.advance(25)
        auction = self.client.get(f'/api/auctions/{auction_id}').get_json()
        self.assertEqual(auction['status'], 'LIVE')
        self.assertEqual(auction['duration'], 100)
        self.assertEqual(auction['price'], {'bid_amount': str(3 * UNIT // 2), 'collateral_offered': str(UNIT)})

        response = self.client.post(f'/api/auctions/{auction_id}/bid', headers=self.auth(BOB))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['result']['collateral_offered'], str(UNIT))

        response = self.client.post(f'/api/auctions/{auction_id}/bid', headers=self.auth(BOB))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()['error_type'], 'AuctionNotLive')

        auction = self.client.get(f'/api/auctions/{auction_id}').get_json()
        self.assertEqual(auction['status'], 'SETTLED')
        self.assertNotIn('price', auction)
        self.assertEqual(self.client.get('/api/auctions/42').status_code, 404)

    def test_stats(self):
        """Test market statistics"""
        self.create_loan()

        stats = self.client.get('/api/stats').get_json()

        self.assertEqual(stats['coordinator'], self.coordinator_address)
        self.assertEqual(stats['lending']['active_loans'], 1)
        self.assertEqual(stats['timestamp'], self.clock.now())
        self.assertGreater(stats['engine']['total_transactions'], 0)

class TestSerialization(unittest.TestCase):
    """Test cases for response encoding"""

    def test_serialize_keeps_precision(self):
        """Test large integers become strings and ids stay numbers"""
        from lending_contracts.financial import Term

        term = Term(id=3, owner=ALICE, liquidation_bonus=WAD, auction_length=60, last_update_time=1)
        data = serialize(term)

        self.assertEqual(data['id'], 3)
        self.assertEqual(data['auction_length'], 60)
        self.assertEqual(data['last_update_time'], 1)
        self.assertEqual(data['base_borrow_index'], str(WAD))
        self.assertEqual(data['fixed_rate'], '0')

if __name__ == '__main__':
    unittest.main()
