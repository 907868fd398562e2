"""API Module for the Lending Coordinator

This module provides REST API endpoints for the peer-to-peer lending market:
terms, loans, liquidation auctions and market statistics.

Features:
- RESTful API endpoints
- JWT authentication for bcrypt-verified account credentials
- Request validation
- Error mapping from reverted transactions to HTTP statuses
- CORS support

Components:
- REST API server
- Authentication middleware
- Request/response handlers
"""

import logging

from .accounts import AccountRegistry
from .rest_api import (
    LendingAPI,
    AuthResource,
    TermListResource,
    TermResource,
    TermAccrueResource,
    LoanListResource,
    LoanResource,
    LoanActionResource,
    BorrowerLoansResource,
    AuctionResource,
    AuctionActionResource,
    StatsResource,
    create_app,
    error_status,
    validate_request
)

__all__ = [
    'LendingAPI',
    'AuthResource',
    'TermListResource',
    'TermResource',
    'TermAccrueResource',
    'LoanListResource',
    'LoanResource',
    'LoanActionResource',
    'BorrowerLoansResource',
    'AuctionResource',
    'AuctionActionResource',
    'StatsResource',
    'create_app',
    'start_api_server',
    'validate_request',
    'error_status',
    'AccountRegistry'
]

__version__ = '1.0.0'

logger = logging.getLogger(__name__)

# API Configuration
API_PREFIX = '/api'
DEFAULT_PORT = 5000
DEFAULT_HOST = '0.0.0.0'

def start_api_server(host=DEFAULT_HOST, port=DEFAULT_PORT, debug=False, accounts=None):
    """Start the API server

    Args:
        host (str): Host to bind to
        port (int): Port to listen on
        debug (bool): Enable debug mode
        accounts (AccountRegistry): Provisioned credentials; nobody can log in without them

    Returns:
        Flask app instance
    """
    app = create_app(accounts=accounts)

    logger.info(f"API endpoints available at: http://{host}:{port}{API_PREFIX}")

    app.run(host=host, port=port, debug=debug)
    return app

# Export configuration
CONFIG = {
    'API_PREFIX': API_PREFIX,
    'DEFAULT_PORT': DEFAULT_PORT,
    'DEFAULT_HOST': DEFAULT_HOST
}
