# File: levelpark/domain/strategies.py
"""
Fine Policy Engine for the LevelPark facility rule engine

Fine calculation is pluggable at runtime. Instead of a class per algorithm,
each policy is a small immutable value tagged with a FinePolicyType and a
single pure function switches on the tag to evaluate it.

Key Components:
1. FinePolicyType - Tag for the stock policies (FIXED, HOURLY, PROGRESSIVE)
2. FinePolicy - Immutable policy value with its amounts
3. calculate_fine - Pure evaluation function over (policy, hours)
4. FineCalculationContext - Active policy, its effective-from timestamp and
   the history of earlier policies

Benefits:
- New parameters for a policy do not require a new class
- Evaluation is total: any non-negative hour count yields an amount
- Policy switches are recorded so callers can scope fines to the policy
  that governed them
"""

from dataclasses import dataclass
from typing import Optional, List, Tuple, Union
from datetime import datetime
from decimal import Decimal
import logging
from enum import Enum

from .models import to_decimal


# ============================================================================
# POLICY TYPES
# ============================================================================

class FinePolicyType(Enum):
    """Tag identifying a fine calculation algorithm"""
    FIXED = "FIXED"
    HOURLY = "HOURLY"
    PROGRESSIVE = "PROGRESSIVE"

    @classmethod
    def from_name(cls, name: Union['FinePolicyType', str]) -> 'FinePolicyType':
        """Resolve a policy type by name, case-insensitive"""
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().upper())
        except ValueError:
            raise ValueError(
                f"Unknown fine policy: {name!r} "
                f"(expected one of {', '.join(t.value for t in cls)})"
            ) from None

    @property
    def description(self) -> str:
        descriptions = {
            FinePolicyType.FIXED: "Flat fine independent of duration",
            FinePolicyType.HOURLY: "Fine charged per overstay hour",
            FinePolicyType.PROGRESSIVE: "Base fine plus an hourly surcharge",
        }
        return descriptions[self]


@dataclass(frozen=True)
class FinePolicy:
    """
    Value Object: A fine policy and its parameters
    Only the parameters relevant to the tag are used during evaluation
    """
    policy_type: FinePolicyType = FinePolicyType.FIXED
    flat_amount: Decimal = Decimal('50.00')
    hourly_rate: Decimal = Decimal('20.00')
    base_amount: Decimal = Decimal('50.00')
    escalation_rate: Decimal = Decimal('10.00')

    def __post_init__(self):
        """Validate policy parameters"""
        for name in ("flat_amount", "hourly_rate", "base_amount", "escalation_rate"):
            value = to_decimal(getattr(self, name))
            if value < Decimal('0'):
                raise ValueError(f"Fine policy {name} cannot be negative")
            object.__setattr__(self, name, value)

    @classmethod
    def fixed(cls, amount: Union[Decimal, float, int] = Decimal('50.00')) -> 'FinePolicy':
        return cls(FinePolicyType.FIXED, flat_amount=to_decimal(amount))

    @classmethod
    def hourly(cls, rate: Union[Decimal, float, int] = Decimal('20.00')) -> 'FinePolicy':
        return cls(FinePolicyType.HOURLY, hourly_rate=to_decimal(rate))

    @classmethod
    def progressive(
        cls,
        base: Union[Decimal, float, int] = Decimal('50.00'),
        escalation_rate: Union[Decimal, float, int] = Decimal('10.00')
    ) -> 'FinePolicy':
        return cls(
            FinePolicyType.PROGRESSIVE,
            base_amount=to_decimal(base),
            escalation_rate=to_decimal(escalation_rate)
        )

    @classmethod
    def from_name(cls, name: Union[FinePolicyType, str]) -> 'FinePolicy':
        """Build a stock policy with default amounts from its name"""
        return cls(FinePolicyType.from_name(name))

    def calculate_fine(self, hours: Union[int, float, Decimal]) -> Decimal:
        """Evaluate this policy for the given number of hours"""
        return calculate_fine(self, hours)

    def get_strategy_name(self) -> str:
        """Get the policy name as shown to operators"""
        return self.policy_type.value

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Fine Policy"


# ============================================================================
# EVALUATION
# ============================================================================

def calculate_fine(policy: FinePolicy, hours: Union[int, float, Decimal]) -> Decimal:
    """
    Compute a fine amount for a policy
    Negative hour counts are treated as zero so the result is never negative.

    FIXED:       flat_amount
    HOURLY:      hourly_rate * hours
    PROGRESSIVE: base_amount + escalation_rate * hours
    """
    hours = max(Decimal('0'), to_decimal(hours))

    if policy.policy_type is FinePolicyType.FIXED:
        return policy.flat_amount
    if policy.policy_type is FinePolicyType.HOURLY:
        return policy.hourly_rate * hours
    if policy.policy_type is FinePolicyType.PROGRESSIVE:
        return policy.base_amount + policy.escalation_rate * hours

    raise ValueError(f"Unsupported fine policy type: {policy.policy_type}")


# ============================================================================
# CONTEXT
# ============================================================================

class FineCalculationContext:
    """
    Holds exactly one active fine policy plus the moment it became active

    The context does not recompute fines issued under an earlier policy.
    It keeps the earlier policies so that callers can look up which one
    governed a given moment via policy_at().
    """

    def __init__(
        self,
        policy: Optional[FinePolicy] = None,
        effective_from: Optional[datetime] = None
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._policy = policy or FinePolicy.fixed()
        self._effective_from = effective_from or datetime.now()
        self._history: List[Tuple[datetime, FinePolicy]] = []

    @property
    def policy(self) -> FinePolicy:
        """Get the active policy"""
        return self._policy

    @property
    def effective_from(self) -> datetime:
        """Get the moment the active policy was switched on"""
        return self._effective_from

    @property
    def current_policy_name(self) -> str:
        return self._policy.get_strategy_name()

    def set_policy(self, policy: FinePolicy, at: Optional[datetime] = None) -> FinePolicy:
        """
        Switch the active policy
        Returns: the previously active policy
        """
        if not isinstance(policy, FinePolicy):
            raise ValueError(f"Fine policy must be a FinePolicy, got: {policy!r}")

        previous = self._policy
        self._history.append((self._effective_from, previous))
        self._policy = policy
        self._effective_from = at or datetime.now()

        self.logger.info(
            f"Fine policy changed from {previous.get_strategy_name()} "
            f"to {policy.get_strategy_name()} at {self._effective_from.isoformat()}"
        )
        return previous

    def calculate_fine(self, hours: Union[int, float, Decimal]) -> Decimal:
        """Evaluate the active policy"""
        return calculate_fine(self._policy, hours)

    def policy_at(self, moment: datetime) -> FinePolicy:
        """
        Get the policy that governed a given moment
        Moments before the earliest recorded policy resolve to that policy.
        """
        if moment >= self._effective_from:
            return self._policy

        governing = self._history[0][1] if self._history else self._policy
        for started, policy in self._history:
            if started <= moment:
                governing = policy
        return governing

    @property
    def history(self) -> List[Tuple[datetime, FinePolicy]]:
        """Earlier policies with the time each one became active"""
        return list(self._history)

    def __str__(self) -> str:
        return f"{self.current_policy_name} (since {self._effective_from.isoformat()})"
