# ================================================================================
# Set-cover optimisation
#
# Selects a small primer subset whose union of covered templates reaches the
# required coverage ratio. Both strategies consume a CoverageMatrix built for a
# single settings snapshot:
#
#   greedy - repeatedly take the primer adding most uncovered templates;
#            polynomial, deterministic, not guaranteed minimal
#   ILP    - 0/1 integer program solved with scipy's HiGHS interface; minimal,
#            worst-case exponential, falls back to greedy on timeout or
#            infeasibility
#
# Pairs of primers in conflict (e.g. strong cross-dimers) are never selected
# together by either strategy. A pair is only tested once a strategy is about
# to select both of its primers.
# ================================================================================

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

import numpy as np
from loguru import logger
from scipy.optimize import Bounds, LinearConstraint, milp

from coverplex.coverage.stats import CoverageMatrix
from coverplex.errors import OptimizerError
from coverplex.selector.solution import CoverSolution, SubsetEntry

# Extra seconds granted to the solver thread beyond its own time limit
_TIMEOUT_GRACE = 5.0


def _required_count(n_templates: int, required_ratio: float) -> int:
    return math.ceil(required_ratio * n_templates - 1e-9)


def greedy_sequence(
    matrix: CoverageMatrix,
    target: int | None = None,
    limit: int | None = None,
    stop_without_gain: bool = True,
) -> list[int]:
    """
    Greedy column order.

    At every step the available column covering most still-uncovered rows is
    taken; ties go to the lower penalty, then to the lower column index. A
    column is tested for conflicts with the columns already taken only when
    it is about to be picked; a conflicting column is dropped for good.

    Args:
        matrix: Coverage matrix.
        target: Stop once this many rows are covered.
        limit: Stop after this many columns.
        stop_without_gain: Stop when no column adds coverage; otherwise keep
            taking columns (by penalty) until ``limit`` or no column is left.
    """
    available = np.ones(matrix.n_primers, dtype=bool)
    covered = np.zeros(matrix.n_templates, dtype=bool)
    order: list[int] = []

    while available.any():
        if target is not None and covered.sum() >= target:
            break
        if limit is not None and len(order) >= limit:
            break

        gains = matrix.matrix[~covered].sum(axis=0).astype(int)
        gains[~available] = -1
        best = gains.max()
        if best <= 0 and stop_without_gain:
            break

        candidates = np.flatnonzero(gains == best)
        pick = int(candidates[np.lexsort((candidates, matrix.penalties[candidates]))[0]])
        available[pick] = False
        if any(matrix.in_conflict(taken, pick) for taken in order):
            continue

        order.append(pick)
        covered |= matrix.matrix[:, pick]

    return order


def dominated_columns(matrix: CoverageMatrix) -> dict[int, int]:
    """
    Columns that can be replaced by another column at no cost.

    Column j is dominated by column k if k covers every row j covers and its
    penalty is not higher. Equal columns keep the lower index.

    Returns:
        Mapping of each dominated column to a non-dominated column dominating it.
    """
    n = matrix.n_primers
    counts = matrix.matrix.sum(axis=0)
    order = np.lexsort((np.arange(n), matrix.penalties, -counts))

    kept: list[int] = []
    dominated: dict[int, int] = {}
    for j in order:
        j = int(j)
        if kept:
            extra = matrix.matrix[:, [j]] & ~matrix.matrix[:, kept]
            covers = ~extra.any(axis=0) & (matrix.penalties[kept] <= matrix.penalties[j])
            hits = np.flatnonzero(covers)
            if hits.size:
                dominated[j] = kept[int(hits[0])]
                continue
        kept.append(j)
    return dominated


def _ordered(matrix: CoverageMatrix, columns: list[int]) -> list[int]:
    """Order a fixed set of columns greedily, for readable reports."""
    if not columns:
        return []
    sub = CoverageMatrix(
        matrix=matrix.matrix[:, columns],
        template_ids=matrix.template_ids,
        primer_names=[matrix.primer_names[c] for c in columns],
        penalties=matrix.penalties[columns],
    )
    local = greedy_sequence(sub, stop_without_gain=False)
    return [columns[i] for i in local]


# ================================================================================
# Abstract class for set-cover strategies
# ================================================================================


class SetCoverSelector(ABC):
    name = "abstract"

    def __init__(self, matrix: CoverageMatrix, required_ratio: float = 1.0):
        if not 0.0 <= required_ratio <= 1.0:
            raise ValueError(f"Required coverage ratio must be in [0, 1], got {required_ratio}")
        self.matrix = matrix
        self.required_ratio = required_ratio

    def solution(self, columns: list[int], **kwargs) -> CoverSolution:
        covered = self.matrix.covered(columns)
        return CoverSolution(
            columns=list(columns),
            primer_names=[self.matrix.primer_names[c] for c in columns],
            covered_ids=[t for t, c in zip(self.matrix.template_ids, covered) if c],
            ratio=self.matrix.ratio(columns),
            required_ratio=self.required_ratio,
            strategy=self.name,
            **kwargs,
        )

    @abstractmethod
    def run(self) -> CoverSolution:
        """
        Run the selection method

        """
        pass


# ================================================================================
# Concrete strategies
# ================================================================================


class GreedyCover(SetCoverSelector):
    """Greedy approximation of the minimal set cover."""

    name = "greedy"

    def run(self) -> CoverSolution:
        if self.matrix.n_primers == 0 or self.matrix.n_templates == 0:
            logger.warning("Greedy cover: no candidate primers or templates.")
            return self.solution([])

        target = _required_count(self.matrix.n_templates, self.required_ratio)
        columns = greedy_sequence(self.matrix, target=target)
        solution = self.solution(columns)
        logger.info(
            f"Greedy cover selected {solution.size} of {self.matrix.n_primers} primers "
            f"(coverage {solution.ratio:.3f})."
        )
        return solution


class ExactCover(SetCoverSelector):
    """
    Minimal set cover by 0/1 integer programming.

    Minimises the number of selected primers (penalties only break ties)
    subject to covering every coverable template, or, for a required ratio
    below 1, at least ceil(ratio * n) templates (capped at what is coverable).

    Conflicts from the matrix's conflict_check are generated lazily: each
    solution is tested pair by pair, violated pairs are added as constraints
    and the program is solved again until the selection is conflict-free.
    """

    name = "ILP"

    def __init__(
        self, matrix: CoverageMatrix, required_ratio: float = 1.0, time_limit: float = 60.0
    ):
        super().__init__(matrix, required_ratio)
        self.time_limit = time_limit

    # ------------------------------------------------------------------
    # Model construction
    # ------------------------------------------------------------------

    def _tie_break(self) -> np.ndarray:
        """Per-column penalty weights summing to less than one selected primer."""
        pens = np.where(np.isfinite(self.matrix.penalties), self.matrix.penalties, 0.0)
        pens = np.clip(pens, 0.0, None)
        n = self.matrix.n_primers
        return pens / ((pens.max(initial=0.0) + 1.0) * (n + 1))

    @staticmethod
    def _conflict_rows(cuts: list[tuple[int, int]], n_vars: int) -> list[LinearConstraint]:
        if not cuts:
            return []
        rows = np.zeros((len(cuts), n_vars))
        for r, (i, j) in enumerate(cuts):
            rows[r, i] = 1.0
            rows[r, j] = 1.0
        return [LinearConstraint(rows, -np.inf, 1.0)]

    def _solve(
        self,
        size: int | None = None,
        cuts: list[tuple[int, int]] | None = None,
        excluded=(),
    ) -> list[int]:
        """
        Solve the integer program.

        Args:
            size: If given, select exactly ``size`` primers and maximise the
                number of covered templates instead.
            cuts: Column pairs that may not be selected together.
            excluded: Columns fixed to zero.

        Raises:
            OptimizerError: If the solver does not report an optimal solution.
        """
        A = self.matrix.matrix.astype(float)
        n_t, n_p = A.shape
        coverable = self.matrix.coverable()
        tie = self._tie_break()

        if size is None and self.required_ratio >= 1.0:
            # One covering constraint per coverable template
            c = 1.0 + tie
            n_vars = n_p
            constraints = [LinearConstraint(A[coverable], 1.0, np.inf)] if coverable.any() else []
        else:
            # Template indicators y_t <= sum_j A_tj x_j
            n_vars = n_p + n_t
            link = np.hstack([-A, np.eye(n_t)])
            constraints = [LinearConstraint(link, -np.inf, 0.0)]
            if size is None:
                need = min(
                    _required_count(n_t, self.required_ratio), int(coverable.sum())
                )
                c = np.concatenate([1.0 + tie, np.zeros(n_t)])
                count_row = np.concatenate([np.zeros(n_p), np.ones(n_t)]).reshape(1, -1)
                constraints.append(LinearConstraint(count_row, need, np.inf))
            else:
                c = np.concatenate([tie, -np.ones(n_t)])
                size_row = np.concatenate([np.ones(n_p), np.zeros(n_t)]).reshape(1, -1)
                constraints.append(LinearConstraint(size_row, size, size))
        constraints.extend(self._conflict_rows(cuts or [], n_vars))

        upper = np.ones(n_vars)
        upper[list(excluded)] = 0.0
        result = milp(
            c,
            constraints=constraints,
            integrality=np.ones(n_vars),
            bounds=Bounds(0, upper),
            options={"time_limit": self.time_limit, "disp": False},
        )
        if result.status != 0 or result.x is None:
            raise OptimizerError(f"ILP solver status {result.status}: {result.message}")

        return [int(j) for j in np.flatnonzero(result.x[:n_p] > 0.5)]

    def _bounded_solve(self, size, cuts, excluded) -> list[int]:
        """Run the solver in a worker thread, bounded by the time limit."""
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._solve, size, cuts, excluded)
        try:
            return future.result(timeout=self.time_limit + _TIMEOUT_GRACE)
        except FuturesTimeoutError as e:
            raise OptimizerError(
                f"ILP solver exceeded the time limit of {self.time_limit:g} s"
            ) from e
        finally:
            executor.shutdown(wait=False)

    def solve(self, size: int | None = None) -> list[int]:
        """
        Solve, adding conflict constraints until the selection is conflict-free.

        Without a size, dominated columns are left out of the program until
        their dominating column takes part in a conflict.

        Raises:
            OptimizerError: If the solver fails, times out, or the conflicts
                make the program infeasible.
        """
        cuts = list(self.matrix.conflicts)
        excluded = dominated_columns(self.matrix) if size is None else {}
        if excluded:
            logger.debug(f"ILP: {len(excluded)} dominated primers left out.")

        while True:
            columns = self._bounded_solve(size, cuts, set(excluded))
            violated = self.matrix.conflicts_among(columns)
            if not violated:
                return columns
            logger.debug(f"ILP: {len(violated)} conflicting pairs in the solution, solving again.")
            cuts.extend(violated)
            members = {c for pair in violated for c in pair}
            excluded = {j: k for j, k in excluded.items() if k not in members}

    def run(self) -> CoverSolution:
        if self.matrix.n_primers == 0 or self.matrix.n_templates == 0:
            logger.warning("Exact cover: no candidate primers or templates.")
            return self.solution([])

        logger.info(
            f"Solving set cover ILP for {self.matrix.n_primers} primers and "
            f"{self.matrix.n_templates} templates..."
        )
        try:
            columns = _ordered(self.matrix, self.solve())
        except OptimizerError as e:
            logger.warning(f"{e}. Falling back to the greedy result.")
            greedy = GreedyCover(self.matrix, self.required_ratio).run()
            greedy.fallback = True
            greedy.fallback_reason = str(e)
            return greedy

        solution = self.solution(columns)
        logger.info(
            f"ILP selected {solution.size} primers (coverage {solution.ratio:.3f})."
        )
        return solution


selector_collection = {"greedy": GreedyCover, "ILP": ExactCover}


def select_primers(
    matrix: CoverageMatrix,
    required_ratio: float = 1.0,
    strategy: str = "greedy",
    time_limit: float = 60.0,
) -> CoverSolution:
    """
    Wrapper function to call the set-cover strategy.

    """
    if strategy not in selector_collection:
        raise ValueError(
            f"Unknown optimization strategy '{strategy}'. "
            f"Available: {', '.join(selector_collection)}"
        )
    if strategy == "ILP":
        return ExactCover(matrix, required_ratio, time_limit=time_limit).run()
    return GreedyCover(matrix, required_ratio).run()


# ================================================================================
# Subset enumeration
# ================================================================================


def subset_by_size(
    matrix: CoverageMatrix,
    max_size: int | None = None,
    time_limit: float = 60.0,
) -> list[SubsetEntry]:
    """
    Best subset of exactly k primers for k = 1..N.

    Each size is solved with the ILP under a cardinality constraint; the
    greedy order is used where the solver fails. Coverage is made
    non-decreasing in k: a size whose solution covers less than the previous
    size's extends the previous subset by one primer instead.

    Args:
        matrix: Coverage matrix of the primers to subset.
        max_size: Largest subset size; defaults to the number of primers.
        time_limit: Solver time limit per size (seconds).
    """
    n = matrix.n_primers if max_size is None else min(max_size, matrix.n_primers)
    if n == 0 or matrix.n_templates == 0:
        return []

    exact = ExactCover(matrix, 1.0, time_limit=time_limit)
    max_covered = int(matrix.coverable().sum())
    fallback_order = None

    entries: list[SubsetEntry] = []
    previous: list[int] = []

    for k in range(1, n + 1):
        fallback = False
        prev_covered = int(matrix.covered(previous).sum())

        if prev_covered >= max_covered:
            columns = None
        else:
            try:
                columns = _ordered(matrix, exact.solve(size=k))
            except OptimizerError as e:
                logger.debug(f"Subset size {k}: {e}. Using the greedy order.")
                if fallback_order is None:
                    fallback_order = greedy_sequence(matrix, stop_without_gain=False)
                columns = fallback_order[:k] if len(fallback_order) >= k else None
                fallback = True

        if columns is None or int(matrix.covered(columns).sum()) < prev_covered:
            # Extend the previous subset by the cheapest compatible primer
            remaining = sorted(
                (j for j in range(matrix.n_primers) if j not in previous),
                key=lambda j: (matrix.penalties[j], j),
            )
            extra = next(
                (j for j in remaining if not any(matrix.in_conflict(c, j) for c in previous)),
                None,
            )
            if extra is None:
                logger.debug(f"No compatible primer left to build a subset of size {k}.")
                break
            columns = previous + [extra]

        covered = matrix.covered(columns)
        entries.append(
            SubsetEntry(
                size=k,
                primer_names=[matrix.primer_names[c] for c in columns],
                covered_ids=[t for t, hit in zip(matrix.template_ids, covered) if hit],
                ratio=matrix.ratio(columns),
                fallback=fallback,
            )
        )
        previous = columns

    logger.info(f"Computed optimal subsets for sizes 1..{len(entries)}.")
    return entries
