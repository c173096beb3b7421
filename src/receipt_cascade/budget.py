"""Process-wide daily cost ledger."""

import logging
import threading
from collections.abc import Callable
from datetime import date

from pydantic import BaseModel, ConfigDict

from receipt_cascade.errors import BudgetExceededError
from receipt_cascade.models import ProcessingRoute

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 5.00


class BudgetSnapshot(BaseModel):
    """Point-in-time copy of the ledger."""

    model_config = ConfigDict(frozen=True)

    day: date
    daily_limit: float
    current_spent: float
    remaining_budget: float
    receipt_count: int
    average_cost_per_receipt: float


class CostBudget:
    """Daily spend ledger shared by every pipeline run in the process.

    ``reserve`` performs the affordability check and the charge inside one
    critical section, so two concurrent requests cannot both pass the check
    and jointly overspend the limit. The lock is a ``threading.Lock``; the
    critical sections never await, so it is safe to use from coroutines.
    """

    def __init__(
        self,
        daily_limit: float = DEFAULT_DAILY_LIMIT,
        clock: Callable[[], date] = date.today,
    ) -> None:
        """
        Initialize the ledger.

        Args:
            daily_limit: Maximum spend per calendar day (USD)
            clock: Returns today's date; injectable for tests
        """
        if daily_limit < 0:
            raise ValueError("daily_limit must be non-negative")
        self.daily_limit = daily_limit
        self._clock = clock
        self._lock = threading.Lock()
        self._day = clock()
        self._current_spent = 0.0
        self._receipt_count = 0

    def _rollover(self) -> None:
        today = self._clock()
        if today != self._day:
            logger.info("New budget day %s; resetting daily spend", today)
            self._day = today
            self._current_spent = 0.0
            self._receipt_count = 0

    def _remaining(self) -> float:
        return max(0.0, self.daily_limit - self._current_spent)

    def _affordable(self, cost: float) -> bool:
        # Small epsilon so accumulated float error cannot block an exact fit
        return cost <= self._remaining() + 1e-9

    @property
    def current_spent(self) -> float:
        with self._lock:
            self._rollover()
            return self._current_spent

    @property
    def remaining_budget(self) -> float:
        with self._lock:
            self._rollover()
            return self._remaining()

    @property
    def receipt_count(self) -> int:
        with self._lock:
            self._rollover()
            return self._receipt_count

    @property
    def average_cost_per_receipt(self) -> float:
        with self._lock:
            self._rollover()
            if not self._receipt_count:
                return 0.0
            return self._current_spent / self._receipt_count

    def can_afford(self, route: ProcessingRoute) -> bool:
        with self._lock:
            self._rollover()
            return self._affordable(route.cost_per_request)

    def reserve(self, route: ProcessingRoute) -> None:
        """Atomically check affordability and charge the route's cost.

        The charge stands whether or not the invocation later succeeds.

        Raises:
            BudgetExceededError: If the route costs more than what remains
        """
        with self._lock:
            self._rollover()
            if not self._affordable(route.cost_per_request):
                raise BudgetExceededError(
                    route.name, route.cost_per_request, self._remaining()
                )
            self._current_spent += route.cost_per_request
        logger.debug("Reserved %.4f for route %s", route.cost_per_request, route.name)

    def record(self, cost: float) -> None:
        """Charge ``cost`` and count one processed receipt."""
        if cost < 0:
            raise ValueError("cost must be non-negative")
        with self._lock:
            self._rollover()
            self._current_spent += cost
            self._receipt_count += 1

    def complete_receipt(self) -> None:
        """Count one processed receipt whose cost was already reserved."""
        with self._lock:
            self._rollover()
            self._receipt_count += 1

    def reset(self) -> None:
        """Reset the daily spend. Safe to call repeatedly."""
        with self._lock:
            self._day = self._clock()
            self._current_spent = 0.0
            self._receipt_count = 0
        logger.info("Daily budget reset (limit %.2f)", self.daily_limit)

    def reset_if_new_day(self) -> bool:
        """Roll over to a new day if the clock moved; return True if it did."""
        with self._lock:
            previous = self._day
            self._rollover()
            return self._day != previous

    def snapshot(self) -> BudgetSnapshot:
        with self._lock:
            self._rollover()
            average = (
                self._current_spent / self._receipt_count if self._receipt_count else 0.0
            )
            return BudgetSnapshot(
                day=self._day,
                daily_limit=self.daily_limit,
                current_spent=self._current_spent,
                remaining_budget=self._remaining(),
                receipt_count=self._receipt_count,
                average_cost_per_receipt=average,
            )
