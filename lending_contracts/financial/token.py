from typing import Dict

from ..engine import SmartContract

class ERC20Token(SmartContract):
    """Fungible asset used as loan collateral or debt

    Moves are all-or-nothing and report failure by returning False; the coordinator
    turns a False into a revert. An allowance is only spent by a transfer that happens.
    """

    def __init__(self, name: str, symbol: str, decimals: int = 18,
                 initial_supply: int = 0, owner: str = ""):
        super().__init__()

        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.owner = owner
        self.total_supply = 0

        self.balances: Dict[str, int] = {}
        self.allowances: Dict[str, Dict[str, int]] = {}  # holder -> spender -> amount

        if initial_supply > 0 and owner:
            self._credit(owner, initial_supply)
            self.total_supply = initial_supply

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, holder: str, spender: str) -> int:
        return self.allowances.get(holder, {}).get(spender, 0)

    def transfer(self, to: str, amount: int) -> bool:
        return self._move(self._get_caller(), to, amount)

    def transfer_from(self, holder: str, to: str, amount: int) -> bool:
        """Move ``amount`` out of ``holder`` against the caller's allowance"""
        spender = self._get_caller()
        allowed = self.allowance(holder, spender)
        if allowed < amount:
            self._emit_event('TransferRejected', {
                'from': holder,
                'to': to,
                'amount': amount,
                'reason': 'allowance'
            })
            return False

        if not self._move(holder, to, amount):
            return False
        self.allowances[holder][spender] = allowed - amount
        return True

    def approve(self, spender: str, amount: int) -> bool:
        if amount < 0:
            return False
        holder = self._get_caller()
        self.allowances.setdefault(holder, {})[spender] = amount

        self._emit_event('Approval', {'owner': holder, 'spender': spender, 'amount': amount})
        return True

    def mint(self, to: str, amount: int) -> bool:
        """Issue new units (owner only)"""
        if self._get_caller() != self.owner or amount <= 0:
            return False

        self._credit(to, amount)
        self.total_supply += amount

        self._emit_event('Transfer', {'from': None, 'to': to, 'amount': amount})
        return True

    def _credit(self, account: str, amount: int):
        self.balances[account] = self.balances.get(account, 0) + amount

    def _move(self, source: str, to: str, amount: int) -> bool:
        if amount <= 0 or self.balance_of(source) < amount:
            return False

        self.balances[source] -= amount
        self._credit(to, amount)

        self._emit_event('Transfer', {'from': source, 'to': to, 'amount': amount})
        return True
