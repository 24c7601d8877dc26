"""
Depth-budget-aware approximate maximum.

Many encrypted scores are reduced to one encrypted approximate maximum:
1. Intra-batch: a balanced pairwise tournament
2. Inter-batch: batch results merged sequentially or hierarchically

Every pairwise combination picks its operator from the operands' level:
the polynomial max while there is headroom, a cheap linear blend once the
level is within `margin` of the depth budget L. The tournament and merge
code is generic over the value type, so the same code runs on integer
levels to plan worst-case depth before any ciphertext is touched.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar

from blindmatch.engine.base import HomomorphicEngine
from blindmatch.shared.config import PipelineConfig
from blindmatch.shared.errors import (
    ConfigurationError,
    DepthBudgetError,
    DepthBudgetExceededError,
    EmptyDatabaseError,
)
from blindmatch.shared.protocol import ReductionStats

logger = logging.getLogger(__name__)

T = TypeVar("T")
Combine = Callable[[T, T], T]


# =============================================================================
# Combination operators
# =============================================================================

class CombineOperator(ABC):
    """Combines two encrypted scores into one, consuming `cost` levels."""

    name: str = "operator"
    cost: int = 0

    @abstractmethod
    def combine(self, engine: HomomorphicEngine, a: Any, b: Any) -> Any:
        pass

    @abstractmethod
    def evaluate(self, a: float, b: float) -> float:
        """Plaintext value of the operator."""
        pass


class HighFidelityMax(CombineOperator):
    """
    max(a, b) ~ 0.5*(a + b) + 0.5*sgn(a - b)*(a - b)

    with sgn(x) = c1*x + c3*x^3. Since sgn(d)*d = c1*d^2 + c3*d^4, this is
    evaluated as 0.5*(a + b) + d^2 * (0.5*c1 + 0.5*c3*d^2), which takes
    three multiplicative levels.
    """

    name = "poly_max"
    cost = 3

    def __init__(self, sign_coefficients: Tuple[float, float] = (1.5, -0.5)):
        c1, c3 = sign_coefficients
        self.quadratic = 0.5 * c1
        self.quartic = 0.5 * c3

    def combine(self, engine: HomomorphicEngine, a: Any, b: Any) -> Any:
        total = engine.add(a, b)
        diff = engine.sub(a, b)
        diff_sq = engine.mult(diff, diff)
        inner = engine.add(engine.mult(diff_sq, self.quartic), self.quadratic)
        abs_diff = engine.mult(diff_sq, inner)
        return engine.add(engine.mult(total, 0.5), abs_diff)

    def evaluate(self, a: float, b: float) -> float:
        d2 = (a - b) ** 2
        return 0.5 * (a + b) + d2 * (self.quadratic + self.quartic * d2)


class LinearBlend(CombineOperator):
    """
    0.5*(a + b) + k*(a - b) = (0.5 + k)*a + (0.5 - k)*b

    A convex combination for 0 <= k <= 0.5; k = 0 is the pure average.
    One multiplicative level.
    """

    name = "linear_blend"
    cost = 1

    def __init__(self, bias: float = 0.0):
        if not 0.0 <= bias <= 0.5:
            raise ConfigurationError(f"Fallback bias must be in [0, 0.5], got {bias}")
        self.bias = bias

    def combine(self, engine: HomomorphicEngine, a: Any, b: Any) -> Any:
        if self.bias == 0.0:
            return engine.mult(engine.add(a, b), 0.5)
        return engine.add(
            engine.mult(a, 0.5 + self.bias),
            engine.mult(b, 0.5 - self.bias),
        )

    def evaluate(self, a: float, b: float) -> float:
        return (0.5 + self.bias) * a + (0.5 - self.bias) * b


class DepthBudgetStrategy:
    """
    Chooses the operator for one combination from the current level.

    Fallback once level >= L - margin. The margin must cover the
    high-fidelity cost, otherwise that operator could itself cross L.
    """

    def __init__(
        self,
        depth_budget: int,
        margin: int,
        high_fidelity: Optional[CombineOperator] = None,
        fallback: Optional[CombineOperator] = None,
    ):
        self.depth_budget = depth_budget
        self.margin = margin
        self.high_fidelity = high_fidelity or HighFidelityMax()
        self.fallback = fallback or LinearBlend()

        if margin < self.high_fidelity.cost:
            raise ConfigurationError(
                f"Depth margin {margin} is smaller than the {self.high_fidelity.name} "
                f"cost of {self.high_fidelity.cost} levels"
            )
        if self.fallback.cost >= self.high_fidelity.cost:
            raise ConfigurationError("Fallback operator must be cheaper than the high-fidelity one")

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "DepthBudgetStrategy":
        return cls(
            depth_budget=config.mult_depth,
            margin=config.depth_margin,
            high_fidelity=HighFidelityMax(config.sign_coefficients),
            fallback=LinearBlend(config.fallback_bias),
        )

    @property
    def switch_level(self) -> int:
        """First level at which the fallback is used."""
        return self.depth_budget - self.margin

    def select(self, level: int) -> CombineOperator:
        if level >= self.switch_level:
            return self.fallback
        return self.high_fidelity


# =============================================================================
# Reduction shapes (generic over the value type)
# =============================================================================

def tournament(values: Sequence[T], combine: Combine) -> T:
    """
    Balanced pairwise reduction: adjacent pairs are combined level by
    level, an odd element out passes through unchanged.
    """
    if not values:
        raise EmptyDatabaseError("Cannot reduce an empty batch")

    current = list(values)
    while len(current) > 1:
        next_level = []
        for i in range(0, len(current), 2):
            if i + 1 < len(current):
                next_level.append(combine(current[i], current[i + 1]))
            else:
                next_level.append(current[i])
        current = next_level
    return current[0]


class SequentialMerger:
    """global <- combine(global, batch_result), left to right."""

    def __init__(self, combine: Combine):
        self._combine = combine
        self._acc = None
        self.count = 0

    def push(self, value: T) -> None:
        self._acc = value if self.count == 0 else self._combine(self._acc, value)
        self.count += 1

    def result(self) -> T:
        if self.count == 0:
            raise EmptyDatabaseError("No batch results to merge")
        return self._acc


class HierarchicalMerger:
    """
    Binary-counter merge of batch results.

    slot[r] holds the merge of 2^r consecutive batches. Pushing a value
    carries it upward like a binary increment, so the deepest path through
    k batches has ceil(log2(k)) combinations. Earlier batches are always
    the left operand.
    """

    def __init__(self, combine: Combine):
        self._combine = combine
        self._slots: List[Optional[Any]] = []
        self.count = 0

    def push(self, value: T) -> None:
        carry = value
        rank = 0
        while rank < len(self._slots) and self._slots[rank] is not None:
            carry = self._combine(self._slots[rank], carry)
            self._slots[rank] = None
            rank += 1
        if rank == len(self._slots):
            self._slots.append(carry)
        else:
            self._slots[rank] = carry
        self.count += 1

    def result(self) -> T:
        if self.count == 0:
            raise EmptyDatabaseError("No batch results to merge")
        acc = None
        for value in self._slots:
            if value is None:
                continue
            acc = value if acc is None else self._combine(value, acc)
        return acc


def make_merger(mode: str, combine: Combine):
    if mode == "sequential":
        return SequentialMerger(combine)
    if mode == "hierarchical":
        return HierarchicalMerger(combine)
    raise ConfigurationError(f"Unknown inter-batch mode: {mode!r}")


# =============================================================================
# Encrypted reducer
# =============================================================================

class MaxReducer:
    """
    Reduces encrypted scores to one encrypted approximate maximum.

    Usage:
        merger = reducer.new_merger()
        for batch in batches:
            merger.push(reducer.reduce_batch(batch))
        encrypted_max = merger.result()
    """

    def __init__(
        self,
        engine: HomomorphicEngine,
        strategy: DepthBudgetStrategy,
        inter_batch: str = "sequential",
    ):
        self.engine = engine
        self.strategy = strategy
        self.inter_batch = inter_batch
        self.stats = ReductionStats()

    @classmethod
    def from_config(cls, engine: HomomorphicEngine, config: PipelineConfig) -> "MaxReducer":
        return cls(engine, DepthBudgetStrategy.from_config(config), config.inter_batch)

    def combine(self, a: Any, b: Any) -> Any:
        """
        Combine two encrypted scores with the operator the level allows.

        Raises:
            DepthBudgetExceededError: If the result would reach the engine's
                depth budget (the input outgrew its preflight plan)
        """
        level = max(self.engine.get_level(a), self.engine.get_level(b))
        operator = self.strategy.select(level)
        if level + operator.cost >= self.engine.depth_budget:
            raise DepthBudgetExceededError(
                f"Combining at level {level} with {operator.name} would reach "
                f"level {level + operator.cost} with depth budget {self.engine.depth_budget}"
            )
        if operator is self.strategy.fallback:
            self.stats.fallback_combines += 1
            logger.debug("Level %d >= %d: using %s", level, self.strategy.switch_level, operator.name)
        else:
            self.stats.high_fidelity_combines += 1

        result = operator.combine(self.engine, a, b)
        self.stats.max_level = max(self.stats.max_level, self.engine.get_level(result))
        return result

    def reduce_batch(self, scores: Sequence[Any]) -> Any:
        return tournament(scores, self.combine)

    def new_merger(self):
        return make_merger(self.inter_batch, self.combine)

    def reduce_all(self, batches: Sequence[Sequence[Any]]) -> Any:
        """Reduce in-memory batches (skipping empty ones)."""
        merger = self.new_merger()
        for batch in batches:
            if batch:
                merger.push(self.reduce_batch(batch))
        return merger.result()


# =============================================================================
# Depth planning
# =============================================================================

class DepthPlanner:
    """
    Computes the worst-case level of a reduction without encrypting anything.

    Runs the same tournament and merger code as MaxReducer over integer
    levels, combining two levels as max(a, b) + cost of the selected operator.
    """

    def __init__(
        self,
        strategy: DepthBudgetStrategy,
        inter_batch: str = "sequential",
        score_level: int = 1,
    ):
        """
        Args:
            strategy: Operator selection rule
            inter_batch: Merge mode
            score_level: Level of a freshly computed similarity score
        """
        self.strategy = strategy
        self.inter_batch = inter_batch
        self.score_level = score_level
        self.stats = ReductionStats()

    def _combine(self, a: int, b: int) -> int:
        level = max(a, b)
        operator = self.strategy.select(level)
        if operator is self.strategy.fallback:
            self.stats.fallback_combines += 1
        else:
            self.stats.high_fidelity_combines += 1
        result = level + operator.cost
        self.stats.max_level = max(self.stats.max_level, result)
        return result

    def plan(self, num_vectors: int, batch_size: int) -> int:
        """
        Worst-case final level for N vectors streamed in batches of B.

        Raises:
            EmptyDatabaseError: If num_vectors is 0
        """
        if num_vectors <= 0:
            raise EmptyDatabaseError("Database is empty: there is no maximum of zero elements")

        self.stats = ReductionStats(max_level=self.score_level)
        full_batches, remainder = divmod(num_vectors, batch_size)

        # Every full batch reduces identically, so plan its tournament once
        batch_plans = {}
        merger = make_merger(self.inter_batch, self._combine)
        for index in range(full_batches + (1 if remainder else 0)):
            size = batch_size if index < full_batches else remainder
            if size not in batch_plans:
                batch_plans[size] = self._plan_batch(size)
            else:
                level, high, fallback = batch_plans[size]
                self.stats.high_fidelity_combines += high
                self.stats.fallback_combines += fallback
            merger.push(batch_plans[size][0])
        return merger.result()

    def _plan_batch(self, size: int) -> Tuple[int, int, int]:
        high = self.stats.high_fidelity_combines
        fallback = self.stats.fallback_combines
        level = tournament([self.score_level] * size, self._combine)
        return (
            level,
            self.stats.high_fidelity_combines - high,
            self.stats.fallback_combines - fallback,
        )

    def preflight(self, num_vectors: int, batch_size: int) -> int:
        """
        Fail fast when a configuration cannot finish below the depth budget.

        Returns:
            Worst-case level (strictly below the depth budget)

        Raises:
            EmptyDatabaseError: If num_vectors is 0
            DepthBudgetError: If the worst-case level reaches the budget
        """
        worst = self.plan(num_vectors, batch_size)
        if worst >= self.strategy.depth_budget:
            raise DepthBudgetError(
                worst,
                self.strategy.depth_budget,
                f"N={num_vectors}, B={batch_size}, margin={self.strategy.margin}, "
                f"inter_batch={self.inter_batch}",
            )
        logger.info(
            "Depth preflight: worst-case level %d/%d (%d poly, %d fallback combines)",
            worst, self.strategy.depth_budget,
            self.stats.high_fidelity_combines, self.stats.fallback_combines,
        )
        return worst
