"""Smart Contract Engine Module

This module provides the execution substrate the lending contracts run on:

- Virtual Machine (VM) with atomic transactions and contract-to-contract calls
- Re-entrancy guard for contract entry points
- External monotonic clocks
- Smart Contract Engine for deployment, receipts and transaction history
"""

from .vm import (
    SmartContractVM,
    SmartContract,
    ExecutionContext,
    ExecutionResult,
    CallResult,
    ManualClock,
    SystemClock,
    VMException,
    VMError,
    OutOfGasException,
    ContractNotFoundException,
    FunctionNotFoundException,
    ReentrancyError,
    ClockError,
    nonreentrant,
    BASE_TRANSACTION_GAS,
    MESSAGE_CALL_GAS,
    DEFAULT_GAS_LIMIT
)

from .engine import (
    SmartContractEngine,
    Deployment,
    TransactionReceipt,
    DEPLOYMENT_GAS
)

__all__ = [
    # VM classes
    'SmartContractVM',
    'SmartContract',
    'ExecutionContext',
    'ExecutionResult',
    'CallResult',
    'ManualClock',
    'SystemClock',
    'VMException',
    'VMError',
    'OutOfGasException',
    'ContractNotFoundException',
    'FunctionNotFoundException',
    'ReentrancyError',
    'ClockError',
    'nonreentrant',

    # Engine classes
    'SmartContractEngine',
    'Deployment',
    'TransactionReceipt'
]

CONFIG = {
    'BASE_TRANSACTION_GAS': BASE_TRANSACTION_GAS,
    'MESSAGE_CALL_GAS': MESSAGE_CALL_GAS,
    'DEFAULT_GAS_LIMIT': DEFAULT_GAS_LIMIT,
    'DEPLOYMENT_GAS': DEPLOYMENT_GAS
}

__version__ = '1.0.0'
