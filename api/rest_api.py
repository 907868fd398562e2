from flask import Flask, request, g, current_app
from flask_cors import CORS
from flask_restful import Api, Resource
from functools import wraps
from dataclasses import asdict
from enum import Enum
import jwt
import os
import time
import logging
from typing import Dict, Any, Optional, Tuple

from lending_contracts import create_lending_market, SmartContractEngine
from lending_contracts.engine import VMException
from lending_contracts.financial import (
    LendingError, Unauthorized, LoanNotFound, AuctionNotFound, TermNotFound,
    InvalidTerms, InvalidAmount
)

from api.accounts import AccountRegistry

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = 'dev-secret-change-in-production'
DEFAULT_TOKEN_TTL = 3600  # seconds

LOAN_FIELDS = ['lender', 'collateral_asset', 'debt_asset',
               'collateral_amount', 'debt_amount', 'term_id']

# Small integer fields sent as JSON numbers; amounts and indices go as strings
PLAIN_INT_SUFFIXES = ('id', '_time', 'duration', 'auction_length')

# Most specific first
ERROR_STATUS = [
    (Unauthorized, 403),
    ((LoanNotFound, AuctionNotFound, TermNotFound), 404),
    ((InvalidTerms, InvalidAmount), 400),
    (LendingError, 409),
    (VMException, 409)
]

def error_status(exception: Optional[Exception]) -> int:
    """HTTP status for a reverted transaction"""
    for error_types, status in ERROR_STATUS:
        if isinstance(exception, error_types):
            return status
    return 500

def serialize(record) -> Dict[str, Any]:
    """Dataclass record to JSON-safe dict; integers as strings to keep precision"""
    result = {}
    for key, value in asdict(record).items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, int) and not isinstance(value, bool) and not key.endswith(PLAIN_INT_SUFFIXES):
            value = str(value)
        result[key] = value
    return result

class LendingAPI:
    """REST API in front of a lending coordinator"""

    def __init__(self, engine: Optional[SmartContractEngine] = None,
                 coordinator_address: Optional[str] = None,
                 secret_key: Optional[str] = None,
                 token_ttl: Optional[int] = None,
                 accounts: Optional[AccountRegistry] = None):
        self.app = Flask(__name__)
        self.app.config['SECRET_KEY'] = secret_key or os.environ.get('LENDING_API_SECRET_KEY', DEFAULT_SECRET_KEY)
        self.app.config['TOKEN_TTL'] = token_ttl or int(os.environ.get('LENDING_API_TOKEN_TTL', DEFAULT_TOKEN_TTL))

        self.accounts = accounts if accounts is not None else AccountRegistry()

        # Enable CORS for all routes
        CORS(self.app)

        # Initialize Flask-RESTful
        self.api = Api(self.app)

        if coordinator_address is None:
            market = create_lending_market(engine)
            self.engine = market.engine
            self.coordinator_address = market.coordinator_address
        else:
            self.engine = engine
            self.coordinator_address = coordinator_address

        # Register API routes
        self._register_routes()

    def register_account(self, address: str, password: str):
        """Provision the password that lets HTTP clients act as an address"""
        self.accounts.register(address, password)

    @property
    def coordinator(self):
        return self.engine.get_contract(self.coordinator_address)

    def _register_routes(self):
        """Register all API routes"""
        kwargs = {'api': self}

        # Authentication routes
        self.api.add_resource(AuthResource, '/api/auth/token', resource_class_kwargs=kwargs)

        # Term routes
        self.api.add_resource(TermListResource, '/api/terms', resource_class_kwargs=kwargs)
        self.api.add_resource(TermResource, '/api/terms/<int:term_id>', resource_class_kwargs=kwargs)
        self.api.add_resource(TermAccrueResource, '/api/terms/<int:term_id>/accrue',
                              resource_class_kwargs=kwargs)

        # Loan routes
        self.api.add_resource(LoanListResource, '/api/loans', resource_class_kwargs=kwargs)
        self.api.add_resource(LoanResource, '/api/loans/<int:loan_id>', resource_class_kwargs=kwargs)
        self.api.add_resource(LoanActionResource, '/api/loans/<int:loan_id>/<string:action>',
                              resource_class_kwargs=kwargs)
        self.api.add_resource(BorrowerLoansResource, '/api/borrowers/<string:address>/loans',
                              resource_class_kwargs=kwargs)

        # Auction routes
        self.api.add_resource(AuctionResource, '/api/auctions/<int:auction_id>', resource_class_kwargs=kwargs)
        self.api.add_resource(AuctionActionResource, '/api/auctions/<int:auction_id>/<string:action>',
                              resource_class_kwargs=kwargs)

        # Market data routes
        self.api.add_resource(StatsResource, '/api/stats', resource_class_kwargs=kwargs)

    def transact(self, function_name: str, *args) -> Tuple[Dict[str, Any], int]:
        """Send a coordinator transaction as the authenticated caller"""
        receipt = self.engine.call_contract(self.coordinator_address, function_name, list(args), g.caller)
        if not receipt.success:
            return {
                'success': False,
                'error': receipt.error,
                'error_type': type(receipt.exception).__name__ if receipt.exception else None,
                'transaction_hash': receipt.transaction_hash
            }, error_status(receipt.exception)

        return {
            'success': True,
            'result': receipt.return_data,
            'transaction_hash': receipt.transaction_hash,
            'gas_used': receipt.gas_used,
            'events': [log['event'] for log in receipt.logs]
        }, 200

    def view(self, function_name: str, *args):
        """Read coordinator state between transactions"""
        with self.engine.lock:
            return getattr(self.coordinator, function_name)(*args)

    def run(self, host='0.0.0.0', port=5000, debug=False):
        """Run the Flask application"""
        logger.info(f"Starting API server on {host}:{port}")
        self.app.run(host=host, port=port, debug=debug)

def require_auth(f):
    """Decorator to require authentication for API endpoints"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = request.headers.get('Authorization')
        if not token:
            return {'error': 'No authorization token provided'}, 401

        try:
            # Remove 'Bearer ' prefix if present
            if token.startswith('Bearer '):
                token = token[7:]

            payload = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=['HS256'])
            g.caller = payload['sub']

        except jwt.ExpiredSignatureError:
            return {'error': 'Token has expired'}, 401
        except (jwt.InvalidTokenError, KeyError):
            return {'error': 'Invalid token'}, 401

        return f(*args, **kwargs)
    return decorated_function

def validate_request(request_data, required_fields):
    """Validate API request data

    Returns:
        tuple: (is_valid, error_message)
    """
    if not isinstance(request_data, dict):
        return False, "Request data must be a JSON object"

    missing_fields = [field for field in required_fields
                      if field not in request_data or request_data[field] is None]
    if missing_fields:
        return False, f"Missing required fields: {', '.join(missing_fields)}"

    return True, None

def parse_int(data: Dict[str, Any], field: str, default: Optional[int] = None) -> int:
    """Read an integer field that may be sent as a JSON number or decimal string"""
    value = data.get(field, default)
    if value is None:
        raise ValueError(f"Missing required field: {field}")
    if isinstance(value, bool):
        raise ValueError(f"Field {field} must be an integer")
    return int(value)

def view_error(exception: Exception):
    """Response for a view that raised"""
    if isinstance(exception, (LoanNotFound, AuctionNotFound, TermNotFound)):
        return {'error': str(exception)}, 404
    logger.error(f"View error: {exception}")
    return {'error': 'Internal server error'}, 500

class AuthResource(Resource):
    """Bearer token issuance for a provisioned account"""

    def __init__(self, api):
        self.api = api

    def post(self):
        data = request.get_json(silent=True) or {}
        address = data.get('address')
        password = data.get('password')
        if not isinstance(address, str) or not isinstance(password, str) or not address or not password:
            return {'error': 'Account address and password required'}, 400

        if not self.api.accounts.authenticate(address, password):
            return {'error': 'Invalid credentials'}, 401

        ttl = current_app.config['TOKEN_TTL']
        payload = {
            'sub': address,
            'iat': int(time.time()),
            'exp': int(time.time()) + ttl
        }
        token = jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm='HS256')

        return {
            'success': True,
            'token': token,
            'expires_in': ttl
        }

class TermListResource(Resource):
    """Loan term registration"""

    def __init__(self, api):
        self.api = api

    @require_auth
    def post(self):
        data = request.get_json(silent=True) or {}
        try:
            liquidation_bonus = parse_int(data, 'liquidation_bonus')
            auction_length = parse_int(data, 'auction_length')
            fixed_rate = parse_int(data, 'fixed_rate', 0)
        except ValueError as e:
            return {'error': str(e)}, 400

        return self.api.transact('set_term', liquidation_bonus, auction_length,
                                 data.get('rate_source'), fixed_rate)

class TermResource(Resource):
    def __init__(self, api):
        self.api = api

    def get(self, term_id):
        try:
            return serialize(self.api.view('get_term', term_id))
        except Exception as e:
            return view_error(e)

class TermAccrueResource(Resource):
    def __init__(self, api):
        self.api = api

    @require_auth
    def post(self, term_id):
        response, status = self.api.transact('accrue_index', term_id)
        if status == 200:
            response['result'] = str(response['result'])
        return response, status

class LoanListResource(Resource):
    """Loan creation"""

    def __init__(self, api):
        self.api = api

    @require_auth
    def post(self):
        data = request.get_json(silent=True) or {}
        is_valid, error = validate_request(data, LOAN_FIELDS)
        if not is_valid:
            return {'error': error}, 400

        try:
            collateral_amount = parse_int(data, 'collateral_amount')
            debt_amount = parse_int(data, 'debt_amount')
            term_id = parse_int(data, 'term_id')
        except ValueError as e:
            return {'error': str(e)}, 400

        return self.api.transact(
            'create_loan',
            data['lender'],
            data.get('borrower', g.caller),
            data['collateral_asset'],
            data['debt_asset'],
            collateral_amount,
            debt_amount,
            term_id,
            data.get('data', '').encode()
        )

class LoanResource(Resource):
    def __init__(self, api):
        self.api = api

    def get(self, loan_id):
        include_pending = request.args.get('pending', 'false').lower() in ('1', 'true', 'yes')
        try:
            loan = serialize(self.api.view('get_loan', loan_id, include_pending))
            loan['auction_id'] = self.api.view('get_loan_auction', loan_id)
            loan['accrued_interest'] = str(self.api.view('get_accrued_interest', loan_id))
            return loan
        except Exception as e:
            return view_error(e)

class LoanActionResource(Resource):
    """Debt and collateral changes and liquidation"""

    def __init__(self, api):
        self.api = api

    @require_auth
    def post(self, loan_id, action):
        data = request.get_json(silent=True) or {}

        if action == 'liquidate':
            return self.api.transact('liquidate', loan_id)

        if action not in ('debt', 'collateral'):
            return {'error': 'Invalid operation'}, 400

        try:
            amount = parse_int(data, 'amount')
        except ValueError as e:
            return {'error': str(e)}, 400

        on_behalf_of = data.get('on_behalf_of', g.caller)
        function_name = 'change_debt' if action == 'debt' else 'change_collateral'
        response, status = self.api.transact(function_name, loan_id, on_behalf_of, amount)
        if status == 200:
            response['result'] = str(response['result'])
        return response, status

class BorrowerLoansResource(Resource):
    def __init__(self, api):
        self.api = api

    def get(self, address):
        return {'borrower': address, 'loan_ids': self.api.view('get_borrower_loans', address)}

class AuctionResource(Resource):
    def __init__(self, api):
        self.api = api

    def get(self, auction_id):
        try:
            auction = serialize(self.api.view('get_auction', auction_id))
            if auction['status'] == 'LIVE':
                bid_amount, collateral_offered = self.api.view('get_auction_price', auction_id)
                auction['price'] = {
                    'bid_amount': str(bid_amount),
                    'collateral_offered': str(collateral_offered)
                }
            return auction
        except Exception as e:
            return view_error(e)

class AuctionActionResource(Resource):
    """Bidding, reclaiming and stopping auctions"""

    FUNCTIONS = {
        'bid': 'bid',
        'reclaim': 'reclaim',
        'stop': 'stop_auction'
    }

    def __init__(self, api):
        self.api = api

    @require_auth
    def post(self, auction_id, action):
        function_name = self.FUNCTIONS.get(action)
        if function_name is None:
            return {'error': 'Invalid operation'}, 400

        response, status = self.api.transact(function_name, auction_id)
        if status == 200 and action == 'bid':
            bid_amount, collateral_offered = response['result']
            response['result'] = {
                'bid_amount': str(bid_amount),
                'collateral_offered': str(collateral_offered)
            }
        elif status == 200 and action == 'reclaim':
            response['result'] = str(response['result'])
        return response, status

class StatsResource(Resource):
    def __init__(self, api):
        self.api = api

    def get(self):
        return {
            'coordinator': self.api.coordinator_address,
            'lending': self.api.view('get_coordinator_stats'),
            'engine': self.api.engine.get_engine_stats(),
            'timestamp': self.api.engine.vm.timestamp
        }

# Main application factory
def create_app(engine: Optional[SmartContractEngine] = None,
               coordinator_address: Optional[str] = None, **kwargs):
    """Create and configure the Flask application"""
    api = LendingAPI(engine=engine, coordinator_address=coordinator_address, **kwargs)
    return api.app

if __name__ == '__main__':
    LendingAPI().run(debug=True)
