"""Progress allocation across the phases of a sync operation."""

from typing import Dict, List, Optional

from ..models.operation import ComponentKind

VALIDATION = 'validation'
FINALIZATION = 'finalization'

EXECUTION_ORDER: List[ComponentKind] = [
    ComponentKind.EXTENSION,
    ComponentKind.THEME,
    ComponentKind.TABLE,
    ComponentKind.MEDIA,
]

PHASE_SHARES: Dict[str, int] = {
    VALIDATION: 10,
    ComponentKind.EXTENSION.value: 30,
    ComponentKind.THEME.value: 15,
    ComponentKind.TABLE.value: 15,
    ComponentKind.MEDIA.value: 10,
}


class ProgressPlan:
    """Cumulative checkpoints for each phase.

    Every phase ends at a fixed percentage no matter how many items it
    holds; finalization takes whatever remains up to 100.
    """

    def __init__(self, shares: Optional[Dict[str, int]] = None):
        self.shares = dict(shares or PHASE_SHARES)
        self._bases: Dict[str, int] = {}
        self._checkpoints: Dict[str, int] = {}

        total = 0
        for phase in [VALIDATION] + [k.value for k in EXECUTION_ORDER]:
            self._bases[phase] = total
            total += self.shares.get(phase, 0)
            self._checkpoints[phase] = total
        if total > 100:
            raise ValueError('Phase shares exceed 100 percent')
        self._bases[FINALIZATION] = total
        self._checkpoints[FINALIZATION] = 100

    @staticmethod
    def _phase(kind) -> str:
        return kind.value if isinstance(kind, ComponentKind) else kind

    def base(self, kind) -> int:
        """Progress when the phase starts."""
        return self._bases[self._phase(kind)]

    def checkpoint(self, kind) -> int:
        """Progress when the phase ends."""
        return self._checkpoints[self._phase(kind)]

    def after_item(self, kind, index: int, total: int) -> int:
        """Progress once item ``index`` (0-based) of ``total`` is done."""
        phase = self._phase(kind)
        if total <= 0:
            return self._checkpoints[phase]
        share = self._checkpoints[phase] - self._bases[phase]
        return int(round(self._bases[phase] + share * (index + 1) / total))
