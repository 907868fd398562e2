from typing import Dict

from ..engine import SmartContract
from .constants import WAD, BASIS_POINTS_SCALE, SECONDS_PER_YEAR

def apr_to_rate_per_second(apr_bps: int) -> int:
    """Convert an annual rate in basis points to a WAD per-second rate"""
    return apr_bps * WAD // (BASIS_POINTS_SCALE * SECONDS_PER_YEAR)

class AnnualRateSource(SmartContract):
    """Rate source quoting simple annual rates, optionally per term"""

    def __init__(self, owner: str, default_apr_bps: int = 1000):
        super().__init__()

        self.owner = owner
        self.default_apr_bps = default_apr_bps  # Default 10% APR
        self.term_aprs: Dict[int, int] = {}

    def set_term_apr(self, term_id: int, apr_bps: int) -> bool:
        """Override the annual rate for one term"""
        caller = self._get_caller()
        if caller != self.owner or apr_bps < 0:
            return False

        self.term_aprs[term_id] = apr_bps

        self._emit_event('TermRateUpdated', {
            'term_id': term_id,
            'apr_bps': apr_bps
        })

        return True

    def rate(self, term_id: int, elapsed: int) -> int:
        """Per-second rate in WAD for a term; the same for any elapsed time"""
        return apr_to_rate_per_second(self.term_aprs.get(term_id, self.default_apr_bps))
