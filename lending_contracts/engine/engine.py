from typing import Dict, List, Any, Optional, Tuple, Type
import hashlib
from dataclasses import dataclass, field
import threading
import logging

from .vm import SmartContractVM, SmartContract, DEFAULT_GAS_LIMIT

logger = logging.getLogger(__name__)

DEPLOYMENT_GAS = 50000

@dataclass
class Deployment:
    """Who deployed a contract, and when"""
    address: str
    contract_name: str
    deployer: str
    deployed_at: int
    gas_limit: int = DEFAULT_GAS_LIMIT

@dataclass
class TransactionReceipt:
    """Outcome of one transaction; ``exception`` is set when it reverted"""
    transaction_hash: str
    contract_address: str
    function_name: str
    caller: str
    gas_used: int
    success: bool
    return_data: Any
    logs: List[Dict]
    timestamp: int
    error: Optional[str] = None
    exception: Optional[Exception] = field(default=None, repr=False, compare=False)

class SmartContractEngine:
    """Deploys contracts and runs transactions against them one at a time

    Every entry point takes ``lock``, so concurrent callers (HTTP worker threads)
    are serialized into a single ordered stream of transactions.
    """

    def __init__(self, clock=None, gas_limit: int = DEFAULT_GAS_LIMIT):
        self.vm = SmartContractVM(clock=clock)
        self.deployments: Dict[str, Deployment] = {}
        self.receipts: List[TransactionReceipt] = []
        self.lock = threading.RLock()
        self.gas_limit = gas_limit

    def get_contract(self, address: str) -> Optional[SmartContract]:
        return self.vm.get_contract(address)

    def deploy_contract(self, contract_class: Type[SmartContract], deployer: str,
                        constructor_args: Optional[List[Any]] = None,
                        gas_limit: Optional[int] = None) -> Tuple[str, TransactionReceipt]:
        """Instantiate ``contract_class`` and deploy it from ``deployer``"""
        with self.lock:
            contract = contract_class(*(constructor_args or []))
            address = self.vm.deploy_contract(contract, deployer)
            now = self.vm.timestamp

            self.deployments[address] = Deployment(
                address=address,
                contract_name=contract_class.__name__,
                deployer=deployer,
                deployed_at=now,
                gas_limit=gas_limit or self.gas_limit
            )
            receipt = self._record(TransactionReceipt(
                transaction_hash=self._transaction_hash(deployer, address, "constructor", now),
                contract_address=address,
                function_name="constructor",
                caller=deployer,
                gas_used=DEPLOYMENT_GAS,
                success=True,
                return_data=address,
                logs=[],
                timestamp=now
            ))

            logger.info(f"Contract {contract_class.__name__} deployed at {address}")
            return address, receipt

    def call_contract(self, contract_address: str, function_name: str,
                      args: List[Any], caller: str, gas_limit: Optional[int] = None) -> TransactionReceipt:
        """Send a transaction; a revert is reported on the receipt, never raised"""
        with self.lock:
            deployment = self.deployments.get(contract_address)
            if gas_limit is None:
                gas_limit = deployment.gas_limit if deployment else self.gas_limit

            context = self.vm.new_context(caller, contract_address, gas_limit)
            result = self.vm.execute_contract(contract_address, function_name, args, context)

            receipt = self._record(TransactionReceipt(
                transaction_hash=self._transaction_hash(caller, contract_address, function_name,
                                                        context.timestamp),
                contract_address=contract_address,
                function_name=function_name,
                caller=caller,
                gas_used=result.gas_used,
                success=result.success,
                return_data=result.return_data,
                logs=result.logs,
                timestamp=context.timestamp,
                error=result.error,
                exception=result.exception
            ))

            if result.success:
                logger.debug(f"{caller} -> {contract_address}.{function_name} ok")
            else:
                logger.warning(f"{caller} -> {contract_address}.{function_name} reverted: {result.error}")
            return receipt

    def get_engine_stats(self) -> Dict[str, Any]:
        succeeded = sum(1 for receipt in self.receipts if receipt.success)
        return {
            "total_contracts": len(self.deployments),
            "total_transactions": len(self.receipts),
            "successful_transactions": succeeded,
            "failed_transactions": len(self.receipts) - succeeded
        }

    def _record(self, receipt: TransactionReceipt) -> TransactionReceipt:
        self.receipts.append(receipt)
        return receipt

    def _transaction_hash(self, caller: str, contract_address: str, function_name: str,
                          timestamp: int) -> str:
        # the sequence number keeps identical calls in one instant distinct
        data = f"{len(self.receipts)}:{timestamp}:{caller}:{contract_address}:{function_name}"
        return "0x" + hashlib.sha256(data.encode()).hexdigest()
