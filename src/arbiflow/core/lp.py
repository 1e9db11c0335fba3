"""Thin adapter over SciPy's HiGHS linear programming interface."""
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union
import numpy as np
from scipy.optimize import linprog
from loguru import logger
from ..infrastructure.error_handling import (
    Infeasible, SolverError, SolverTimeout, Unbounded
)

Bounds = Union[Tuple[Optional[float], Optional[float]], Sequence[Tuple[Optional[float], Optional[float]]]]

# scipy.optimize.linprog status codes
_STATUS_OK = 0
_STATUS_LIMIT = 1
_STATUS_INFEASIBLE = 2
_STATUS_UNBOUNDED = 3


@dataclass
class LPSolution:
    """Optimal value (in the requested sense) and variable assignment."""
    value: float
    x: np.ndarray
    iterations: int = 0


def solve_lp(
    c: np.ndarray,
    A_eq: Optional[np.ndarray] = None,
    b_eq: Optional[np.ndarray] = None,
    bounds: Bounds = (0, None),
    maximize: bool = False,
    A_ub: Optional[np.ndarray] = None,
    b_ub: Optional[np.ndarray] = None,
    time_limit: Optional[float] = None,
    method: str = "highs",
    tolerance: Optional[float] = None,
) -> LPSolution:
    """
    Solve a linear program and translate solver status into exceptions.

    Args:
        c: Objective coefficients
        A_eq: Equality constraint matrix
        b_eq: Equality right-hand side
        bounds: Variable bounds, one pair for all variables or one per variable
        maximize: Maximise instead of minimise
        A_ub: Upper-bound inequality matrix
        b_ub: Upper-bound inequality right-hand side
        time_limit: Solver deadline in seconds
        method: linprog method name
        tolerance: HiGHS primal and dual feasibility tolerance

    Raises:
        Infeasible: no point satisfies the constraints
        Unbounded: the objective is unbounded
        SolverTimeout: the time or iteration limit was hit
        SolverError: any other solver failure
    """
    c = np.asarray(c, dtype=float)
    objective = -c if maximize else c

    options = {}
    if time_limit is not None and time_limit > 0:
        options["time_limit"] = float(time_limit)
    if tolerance is not None:
        options["primal_feasibility_tolerance"] = float(tolerance)
        options["dual_feasibility_tolerance"] = float(tolerance)

    result = linprog(
        objective,
        A_ub=A_ub,
        b_ub=b_ub,
        A_eq=A_eq,
        b_eq=b_eq,
        bounds=bounds,
        method=method,
        options=options or None,
    )

    if result.status == _STATUS_OK:
        value = -result.fun if maximize else result.fun
        return LPSolution(
            value=float(value),
            x=np.asarray(result.x, dtype=float),
            iterations=int(getattr(result, "nit", 0) or 0),
        )

    if result.status == _STATUS_LIMIT:
        raise SolverTimeout(f"LP solver stopped early: {result.message}")
    if result.status == _STATUS_INFEASIBLE:
        raise Infeasible(f"LP is infeasible: {result.message}")
    if result.status == _STATUS_UNBOUNDED:
        logger.error(f"LP reported unbounded objective: {result.message}")
        raise Unbounded(f"LP is unbounded: {result.message}")

    raise SolverError(f"LP solver failed with status {result.status}: {result.message}")
