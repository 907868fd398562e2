"""Lending Contracts Module

This module provides a peer-to-peer collateralized lending market on an in-process
smart contract VM:

- VM with atomic transactions, message calls and re-entrancy guards
- Contract engine for deployment, receipts and transaction history
- ERC-20 token contracts for collateral and debt assets
- Lending coordinator with borrow-index interest and Dutch auction liquidation
- Reference rate source and lender contracts

Components:
- VM: Virtual machine for contract execution
- Engine: Contract deployment and management
- ERC20: Standard token contract
- Lending: Lending coordinator contract
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .engine.vm import SmartContractVM, ManualClock, SystemClock, DEFAULT_GAS_LIMIT
from .engine.engine import SmartContractEngine
from .financial.token import ERC20Token
from .financial.lending import LendingCoordinator
from .financial.rates import AnnualRateSource
from .financial.lenders import CollateralRatioLender

__all__ = [
    'SmartContractVM',
    'SmartContractEngine',
    'ManualClock',
    'SystemClock',
    'ERC20Token',
    'LendingCoordinator',
    'AnnualRateSource',
    'CollateralRatioLender',
    'LendingMarket',
    'create_contract_engine',
    'create_lending_market'
]

__version__ = '1.0.0'

logger = logging.getLogger(__name__)

@dataclass
class LendingMarket:
    """A deployed coordinator together with the engine that runs it"""
    engine: SmartContractEngine
    coordinator_address: str

    @property
    def coordinator(self) -> LendingCoordinator:
        return self.engine.get_contract(self.coordinator_address)

def create_contract_engine(clock=None):
    """Create a smart contract engine

    Args:
        clock: External monotonic clock; wall time when omitted

    Returns:
        SmartContractEngine: Configured contract engine
    """
    return SmartContractEngine(clock=clock)

def create_lending_market(engine: Optional[SmartContractEngine] = None,
                          owner: str = "0x0") -> LendingMarket:
    """Deploy a lending coordinator

    Args:
        engine (SmartContractEngine): Engine to deploy on; a new one when omitted
        owner (str): Deployer and owner of the coordinator

    Returns:
        LendingMarket: Engine and coordinator address
    """
    engine = engine or create_contract_engine()
    address, _ = engine.deploy_contract(LendingCoordinator, owner, [owner])
    logger.info(f"Lending market deployed at {address}")
    return LendingMarket(engine=engine, coordinator_address=address)

# Export configuration
CONFIG = {
    'DEFAULT_GAS_LIMIT': DEFAULT_GAS_LIMIT
}
