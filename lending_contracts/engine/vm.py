from typing import Dict, List, Any, Optional, Callable
import copy
import hashlib
import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import wraps

logger = logging.getLogger(__name__)

# Gas schedule
BASE_TRANSACTION_GAS = 21000
MESSAGE_CALL_GAS = 700
DEFAULT_GAS_LIMIT = 1000000

@dataclass
class ExecutionContext:
    """Context for smart contract execution"""
    caller: str
    contract_address: str
    value: int = 0
    gas_limit: int = DEFAULT_GAS_LIMIT
    gas_used: int = 0
    block_number: int = 0
    timestamp: int = field(default_factory=lambda: int(time.time()))
    data: bytes = b''

class ExecutionResult:
    """Result of contract execution"""
    def __init__(self, success: bool, return_data: Any = None,
                 gas_used: int = 0, error: str = None, logs: List[Dict] = None,
                 exception: Optional[Exception] = None):
        self.success = success
        self.return_data = return_data
        self.gas_used = gas_used
        self.error = error
        self.logs = logs or []
        self.exception = exception

    def unwrap(self) -> Any:
        """Return the call's return data, re-raising the failure if the call reverted"""
        if not self.success:
            if self.exception is not None:
                raise self.exception
            raise VMException(self.error or "Execution failed")
        return self.return_data

@dataclass
class CallResult:
    """Outcome of a contract-to-contract call that must not revert its caller"""
    success: bool
    return_data: Any = None
    error: Optional[str] = None

class VMException(Exception):
    """Virtual Machine Exception"""
    pass

# Alias for backward compatibility
VMError = VMException

class OutOfGasException(VMException):
    """Out of gas exception"""
    pass

class ContractNotFoundException(VMException):
    """No contract is deployed at the target address"""
    pass

class FunctionNotFoundException(VMException):
    """Target contract has no such public function"""
    pass

class ReentrancyError(VMException):
    """A guarded entry point was entered again before it returned"""
    pass

class ClockError(VMException):
    """The clock was asked to move backwards"""
    pass

class ManualClock:
    """Externally driven monotonic clock"""

    def __init__(self, start: int = 1700000000):
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ClockError("Clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ClockError(f"Clock cannot move backwards from {self._now} to {timestamp}")
        self._now = timestamp
        return self._now

class SystemClock:
    """Wall clock that never reports an earlier time than it already has"""

    def __init__(self):
        self._last = 0

    def now(self) -> int:
        self._last = max(self._last, int(time.time()))
        return self._last

class SmartContractVM:
    """Smart Contract Virtual Machine

    Executes contract functions as atomic transactions. A transaction sees a single
    timestamp; every message call inside it pushes a frame on the call stack so the
    callee observes the calling contract as its caller.
    """

    def __init__(self, clock=None):
        self.contracts: Dict[str, 'SmartContract'] = {}
        self.logs: List[Dict] = []
        self.call_stack: List[ExecutionContext] = []
        self.clock = clock or SystemClock()
        self.deployment_nonce = 0
        self.block_number = 0
        self._transaction: Optional[ExecutionContext] = None

    @property
    def timestamp(self) -> int:
        """Current instant: the transaction timestamp, or the clock between transactions"""
        if self._transaction is not None:
            return self._transaction.timestamp
        return self.clock.now()

    def new_context(self, caller: str, contract_address: str,
                    gas_limit: int = DEFAULT_GAS_LIMIT, value: int = 0) -> ExecutionContext:
        """Build a top-level execution context stamped by the VM clock"""
        self.block_number += 1
        return ExecutionContext(
            caller=caller,
            contract_address=contract_address,
            value=value,
            gas_limit=gas_limit,
            block_number=self.block_number,
            timestamp=self.clock.now()
        )

    def transact(self, caller: str, contract_address: str, function_name: str,
                 *args, gas_limit: int = DEFAULT_GAS_LIMIT) -> ExecutionResult:
        """Send a transaction from an account to a contract"""
        context = self.new_context(caller, contract_address, gas_limit)
        return self.execute_contract(contract_address, function_name, list(args), context)

    def execute_contract(self, contract_address: str, function_name: str,
                        args: List[Any], context: ExecutionContext) -> ExecutionResult:
        """Execute a smart contract function as one atomic transaction"""
        if self._transaction is not None:
            raise VMException("A transaction is already executing")

        snapshot = self.snapshot()
        self.logs = []
        self._transaction = context
        try:
            self._consume_gas(context, BASE_TRANSACTION_GAS)
            result = self._invoke(context, function_name, args)
            return ExecutionResult(
                success=True,
                return_data=result,
                gas_used=context.gas_used,
                logs=self.logs.copy()
            )
        except OutOfGasException as e:
            self.restore(snapshot)
            return ExecutionResult(False, error="Out of gas", gas_used=context.gas_limit, exception=e)
        except Exception as e:
            self.restore(snapshot)
            logger.debug(f"Transaction {contract_address}.{function_name} reverted: {e}")
            return ExecutionResult(False, error=str(e), gas_used=context.gas_used, exception=e)
        finally:
            self._transaction = None
            self.call_stack = []

    def call(self, caller: str, contract_address: str, function_name: str,
             args: List[Any]) -> Any:
        """Message call from one contract to another inside the current transaction"""
        parent = self._transaction
        context = ExecutionContext(
            caller=caller,
            contract_address=contract_address,
            gas_limit=parent.gas_limit if parent else DEFAULT_GAS_LIMIT,
            block_number=parent.block_number if parent else self.block_number,
            timestamp=self.timestamp
        )
        if parent is not None:
            self._consume_gas(parent, MESSAGE_CALL_GAS)
        return self._invoke(context, function_name, args)

    def try_call(self, caller: str, contract_address: str, function_name: str,
                 args: List[Any]) -> CallResult:
        """Message call whose failure is reported instead of raised

        State changes made by a failed call are rolled back; the caller's own changes
        made before the call are kept.
        """
        snapshot = self.snapshot()
        log_count = len(self.logs)
        depth = len(self.call_stack)
        try:
            return CallResult(True, return_data=self.call(caller, contract_address, function_name, args))
        except OutOfGasException:
            raise
        except Exception as e:
            self.restore(snapshot)
            del self.logs[log_count:]
            del self.call_stack[depth:]
            return CallResult(False, error=f"{type(e).__name__}: {e}")

    def _invoke(self, context: ExecutionContext, function_name: str, args: List[Any]) -> Any:
        """Execute a specific contract function inside its own frame"""
        contract = self.contracts.get(context.contract_address)
        if contract is None:
            raise ContractNotFoundException(f"Contract not found: {context.contract_address}")
        if function_name.startswith('_') or not callable(getattr(contract, function_name, None)):
            raise FunctionNotFoundException(f"Function {function_name} not found")

        func = getattr(contract, function_name)
        self.call_stack.append(context)
        try:
            return func(*args)
        finally:
            self.call_stack.pop()

    def _consume_gas(self, context: ExecutionContext, amount: int):
        """Consume gas and check limits"""
        context.gas_used += amount
        if context.gas_used > context.gas_limit:
            raise OutOfGasException("Gas limit exceeded")

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Copy the state of every deployed contract"""
        # contracts and the VM itself are shared by identity, never copied
        memo = {id(self): self}
        for contract in self.contracts.values():
            memo[id(contract)] = contract
        return {address: copy.deepcopy(contract.__dict__, memo)
                for address, contract in self.contracts.items()}

    def restore(self, snapshot: Dict[str, Dict[str, Any]]):
        """Roll every contract back to a snapshot"""
        for address in list(self.contracts):
            if address not in snapshot:
                del self.contracts[address]
        for address, state in snapshot.items():
            contract = self.contracts[address]
            contract.__dict__.clear()
            contract.__dict__.update(state)

    def deploy_contract(self, contract: 'SmartContract', deployer: str) -> str:
        """Deploy a smart contract"""
        contract_address = self._generate_contract_address(contract, deployer)
        self.contracts[contract_address] = contract

        # Set contract address and VM reference
        contract.address = contract_address
        contract.vm = self

        # Set initial context
        contract.context = ExecutionContext(
            caller=deployer,
            contract_address=contract_address,
            timestamp=self.timestamp
        )

        return contract_address

    def _generate_contract_address(self, contract: 'SmartContract', deployer: str) -> str:
        """Generate a unique contract address"""
        self.deployment_nonce += 1
        data = f"{deployer}{contract.__class__.__name__}{self.deployment_nonce}"
        return "0x" + hashlib.sha256(data.encode()).hexdigest()[:40]

    def get_contract(self, address: str) -> Optional['SmartContract']:
        """Get deployed contract instance by address"""
        return self.contracts.get(address)

    def is_contract(self, address: str) -> bool:
        """Whether an address hosts a contract rather than an external account"""
        return address in self.contracts

def nonreentrant(func: Callable) -> Callable:
    """Reject nested entry into any guarded entry point of the same contract"""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._reentrancy_lock(func.__name__):
            return func(self, *args, **kwargs)
    return wrapper

class SmartContract:
    """Base class for smart contracts"""

    def __init__(self):
        self.vm = None  # Will be set by the VM
        self.address = None  # Will be set when deployed
        self.context = None  # Execution context
        self._entered = False

    def supports_interface(self, interface_id: str) -> bool:
        """Capability probe used before optional callbacks"""
        return False

    @contextmanager
    def _reentrancy_lock(self, entry_point: str):
        if self._entered:
            raise ReentrancyError(f"Re-entrant call to {entry_point}")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

    def _emit_event(self, event_name: str, data: Dict[str, Any]):
        """Emit an event"""
        if self.vm:
            self.vm.logs.append({
                'event': event_name,
                'contract': self.address,
                'data': data,
                'timestamp': self._now()
            })

    def _get_caller(self) -> str:
        """Get the caller address"""
        if self.vm and self.vm.call_stack:
            return self.vm.call_stack[-1].caller
        if self.context:
            return self.context.caller
        return ''

    def _now(self) -> int:
        """Timestamp of the current instant"""
        if self.vm:
            return self.vm.timestamp
        if self.context:
            return self.context.timestamp
        return int(time.time())

    def _call(self, target: str, function_name: str, *args) -> Any:
        """Call another contract with this contract as the caller"""
        if not self.vm:
            raise VMException("Contract is not deployed")
        return self.vm.call(self.address, target, function_name, list(args))

    def _try_call(self, target: str, function_name: str, *args) -> CallResult:
        """Call another contract, capturing failure instead of reverting"""
        if not self.vm:
            return CallResult(False, error="Contract is not deployed")
        return self.vm.try_call(self.address, target, function_name, list(args))
