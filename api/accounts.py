"""Credentials for the accounts the API may act as.

An address can only be used as a transaction sender over HTTP once the operator has
provisioned a password for it. Passwords are stored as bcrypt hashes; repeated failures
lock the address for a while.
"""

from typing import Dict, Optional
from dataclasses import dataclass
import time
import logging

import bcrypt

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_SECONDS = 1800

@dataclass
class AccountCredential:
    address: str
    password_hash: str
    failed_attempts: int = 0
    locked_until: Optional[int] = None

    @property
    def is_locked(self) -> bool:
        return self.locked_until is not None and int(time.time()) < self.locked_until

class AccountRegistry:
    """Address -> bcrypt password hash"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self.credentials: Dict[str, AccountCredential] = {}

    def __contains__(self, address: str) -> bool:
        return address in self.credentials

    def register(self, address: str, password: str):
        if not address:
            raise ValueError("Account address required")
        if address in self.credentials:
            raise ValueError(f"Account {address} already registered")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(self.rounds)).decode('utf-8')
        self.credentials[address] = AccountCredential(address=address, password_hash=password_hash)
        logger.info(f"Account {address} registered")

    def authenticate(self, address: str, password: str) -> bool:
        """Check a password; five failures in a row lock the account"""
        credential = self.credentials.get(address)
        if credential is None:
            logger.warning(f"Login for unknown account {address}")
            return False
        if credential.is_locked:
            logger.warning(f"Login for locked account {address}")
            return False

        if not bcrypt.checkpw(password.encode('utf-8'), credential.password_hash.encode('utf-8')):
            credential.failed_attempts += 1
            if credential.failed_attempts >= MAX_FAILED_ATTEMPTS:
                credential.locked_until = int(time.time()) + LOCKOUT_SECONDS
                logger.warning(f"Account {address} locked after {credential.failed_attempts} failed logins")
            return False

        credential.failed_attempts = 0
        credential.locked_until = None
        return True
