"""
Grid Search

Exhaustive search over a parameter grid. Every grid point is evaluated
with a TestRunner and recorded as a GridPointResult; a point that raises
is recorded as FAILED and never aborts the search. Conformal predictors
are additionally screened for validity: a point whose empirical coverage
falls below ``confidence - tolerance`` is INVALID.

VALID points are ranked by the optimization metric, ties broken by grid
order. Only when no point is VALID does the search raise.

"""

import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.model_selection import ParameterGrid

from ..algorithms import DEFAULT_GRIDS
from ..data import Dataset
from ..exceptions import GridSearchFailure, InvalidInputError
from ..predictors import ACPClassifier, ACPRegressor, TCPClassifier, VAPClassifier
from .metrics import (
    CPAccuracy,
    LogLoss,
    MeanPredictionIntervalWidth,
    Metric,
    ObservedFuzziness,
)
from .testing import TestingStrategy, TestRunner


class GridPointStatus(Enum):
    VALID = 'VALID'
    INVALID = 'INVALID'
    FAILED = 'FAILED'


@dataclass(frozen=True)
class GridPointResult:
    """
    Outcome of one grid point.

    Attributes
    ----------
    params : dict
        Parameter values of this point
    status : GridPointStatus
    score : float or None
        Mean optimization metric over the folds (None when FAILED)
    secondary_scores : dict of {str: float}
    runtime : float
        Seconds spent on this point
    error : str or None
        Why the point is INVALID or FAILED
    order : int
        Position of the point in the grid
    """

    params: Dict[str, Any]
    status: GridPointStatus
    score: Optional[float] = None
    secondary_scores: Dict[str, float] = field(default_factory=dict)
    runtime: float = 0.0
    error: Optional[str] = None
    order: int = 0

    @property
    def is_valid(self) -> bool:
        return self.status is GridPointStatus.VALID


@dataclass
class GridSearchResult:
    """
    Ranked grid search outcome.

    Attributes
    ----------
    metric : Metric
        Optimization metric
    ranked : list of GridPointResult
        VALID points, best first, at most ``max_num_results`` of them
    results : list of GridPointResult
        Every evaluated point in grid order
    errors : list of str
        Deduplicated, capped error messages of INVALID and FAILED points
    """

    metric: Metric
    ranked: List[GridPointResult]
    results: List[GridPointResult]
    errors: List[str] = field(default_factory=list)

    @property
    def best(self) -> GridPointResult:
        return self.ranked[0]

    @property
    def best_params(self) -> Dict[str, Any]:
        return dict(self.best.params)

    @property
    def n_valid(self) -> int:
        return sum(r.is_valid for r in self.results)

    def to_frame(self) -> pd.DataFrame:
        """One row per evaluated point in grid order, parameters as columns."""
        rows = []
        for r in self.results:
            row = {'order': r.order}
            row.update(r.params)
            row['status'] = r.status.value
            row[self.metric.name] = r.score
            row.update(r.secondary_scores)
            row['runtime'] = r.runtime
            row['error'] = r.error
            rows.append(row)
        return pd.DataFrame(rows).set_index('order')


def collect_errors(results: Sequence[GridPointResult], max_errors: int) -> List[str]:
    """Distinct error messages in grid order, at most ``max_errors`` of them."""
    distinct = []
    for r in results:
        if r.error is not None and r.error not in distinct:
            distinct.append(r.error)
    if len(distinct) > max_errors:
        hidden = len(distinct) - max_errors
        distinct = distinct[:max_errors] + [f"... and {hidden} more distinct error(s)"]
    return distinct


def rank_results(results: Sequence[GridPointResult], metric: Metric) -> List[GridPointResult]:
    """VALID points, best first; equal scores keep grid order."""
    valid = [r for r in results if r.is_valid]
    return sorted(valid, key=lambda r: (metric.sort_key(r.score), r.order))


def _scoring_algorithm(predictor):
    if isinstance(predictor, (ACPClassifier, ACPRegressor)):
        return predictor.icp.ncm.algorithm
    if isinstance(predictor, TCPClassifier):
        return predictor.ncm.algorithm
    return predictor.algorithm


def default_grid(predictor) -> Dict[str, List[Any]]:
    """Default search grid for the predictor's scoring algorithm."""
    name = _scoring_algorithm(predictor).name
    if name not in DEFAULT_GRIDS:
        raise InvalidInputError(
            f"No default parameter grid for {name}; pass param_grid explicitly"
        )
    return {k: list(v) for k, v in DEFAULT_GRIDS[name].items()}


class GridSearch:
    """
    Exhaustive hyperparameter search with cross-validated evaluation.

    Parameters
    ----------
    strategy : TestingStrategy
        How every grid point is tested (e.g. KFoldCV(n_folds=10))
    metric : Metric, optional
        Optimization metric. Defaults to ObservedFuzziness for conformal
        classifiers, MeanPredictionIntervalWidth at ``confidence`` for
        conformal regressors and LogLoss for Venn-ABERS predictors
    secondary_metrics : sequence of Metric, optional
        Reported but not optimized
    confidence : float, optional (default=0.8)
        Confidence of the validity screening
    tolerance : float, optional (default=0.05)
        Coverage may fall this far below ``confidence`` before a point is INVALID
    max_num_results : int, optional (default=10)
        Number of ranked points kept in the result
    max_errors_reported : int, optional (default=5)
        Number of distinct error messages kept
    allowed_failure_ratio : float, optional (default=0.05)
        Passed to the TestRunner of each point
    verbose : bool, optional (default=True)

    Examples
    --------
    >>> gs = GridSearch(KFoldCV(n_folds=5, seed=7))
    >>> result = gs.search(acp, dataset, {'C': [0.1, 1.0, 10.0]})
    >>> result.best_params
    {'C': 1.0}
    """

    def __init__(
        self,
        strategy: TestingStrategy,
        metric: Optional[Metric] = None,
        secondary_metrics: Sequence[Metric] = (),
        confidence: float = 0.8,
        tolerance: float = 0.05,
        max_num_results: int = 10,
        max_errors_reported: int = 5,
        allowed_failure_ratio: float = 0.05,
        verbose: bool = True
    ):
        if not 0 < confidence < 1:
            raise InvalidInputError(f"confidence must be in (0,1), got {confidence}")
        if not 0 <= tolerance <= 1:
            raise InvalidInputError(f"tolerance must be in [0,1], got {tolerance}")
        if max_num_results < 1:
            raise InvalidInputError(f"max_num_results must be >= 1, got {max_num_results}")
        if max_errors_reported < 1:
            raise InvalidInputError(
                f"max_errors_reported must be >= 1, got {max_errors_reported}"
            )

        self.runner = TestRunner(strategy, allowed_failure_ratio)
        self.strategy = strategy
        self.metric = metric
        self.secondary_metrics = list(secondary_metrics)
        self.confidence = confidence
        self.tolerance = tolerance
        self.max_num_results = max_num_results
        self.max_errors_reported = max_errors_reported
        self.verbose = verbose

    def _resolve_metrics(self, predictor):
        metric = self.metric
        if metric is None:
            if isinstance(predictor, VAPClassifier):
                metric = LogLoss()
            elif isinstance(predictor, ACPRegressor):
                metric = MeanPredictionIntervalWidth(self.confidence)
            else:
                metric = ObservedFuzziness()

        validity = None
        if not isinstance(predictor, VAPClassifier):
            validity = CPAccuracy(self.confidence)

        metrics = [metric]
        for m in self.secondary_metrics + ([validity] if validity is not None else []):
            if m.name not in {x.name for x in metrics}:
                metrics.append(m)
        return metric, validity, metrics

    def _evaluate_point(self, predictor, dataset, params, order, metric, validity, metrics):
        start = time.perf_counter()
        try:
            candidate = predictor.clone()
            candidate.set_params(**params)
            evaluation = self.runner.evaluate(candidate, dataset, metrics)
        except Exception as exc:
            return GridPointResult(
                params, GridPointStatus.FAILED,
                runtime=time.perf_counter() - start,
                error=f"{type(exc).__name__}: {exc}",
                order=order
            )

        scores = evaluation.as_dict()
        score = scores[metric.name]
        secondary = {name: v for name, v in scores.items() if name != metric.name}
        runtime = time.perf_counter() - start

        error = None
        if np.isnan(score):
            error = f"{metric.name} is undefined (NaN)"
        elif validity is not None and scores[validity.name] < self.confidence - self.tolerance:
            error = (
                f"{validity.name}={scores[validity.name]:.4f} below "
                f"{self.confidence} - {self.tolerance}"
            )
        status = GridPointStatus.VALID if error is None else GridPointStatus.INVALID
        return GridPointResult(params, status, score, secondary, runtime, error, order)

    def _warn_on_edges(self, best: GridPointResult, grid: Mapping[str, Sequence[Any]]) -> None:
        for name, values in grid.items():
            numeric = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
            if len(numeric) < 3 or len(numeric) != len(values):
                continue
            value = best.params[name]
            if value == min(numeric) or value == max(numeric):
                warnings.warn(
                    f"Optimal {name}={value} lies on the edge of the searched grid "
                    f"[{min(numeric)}, {max(numeric)}]; consider extending it."
                )

    def search(
        self,
        predictor,
        dataset: Dataset,
        param_grid: Optional[Mapping[str, Sequence[Any]]] = None
    ) -> GridSearchResult:
        """
        Evaluate every grid point and set the best parameters on ``predictor``.

        Parameters
        ----------
        predictor : ACPClassifier, ACPRegressor, TCPClassifier or VAPClassifier
            Template; each grid point evaluates a clone. On success the best
            parameters are set on this instance (it is left untrained)
        dataset : Dataset
        param_grid : dict of {str: list}, optional
            Parameter name -> candidate values. Defaults to the grid of the
            predictor's scoring algorithm

        Returns
        -------
        result : GridSearchResult

        Raises
        ------
        InvalidInputError
            If the grid names an unknown parameter or is empty
        GridSearchFailure
            If no grid point is VALID
        """
        metric, validity, metrics = self._resolve_metrics(predictor)
        self.runner.check_compatible(predictor, metrics)

        if param_grid is None:
            param_grid = default_grid(predictor)
        param_grid = {name: list(values) for name, values in param_grid.items()}
        if not param_grid or any(len(v) == 0 for v in param_grid.values()):
            raise InvalidInputError("param_grid must name at least one parameter with values")
        unknown = set(param_grid) - set(predictor.get_params())
        if unknown:
            raise InvalidInputError(
                f"Unknown parameter(s) for {type(predictor).__name__}: {sorted(unknown)}"
            )

        points = list(ParameterGrid(param_grid))
        if self.verbose:
            print(f"\n{'='*60}")
            print(f"Grid search: {len(points)} points, {self.strategy!r}")
            print(f"Optimizing {metric.name} "
                  f"({'higher' if metric.higher_is_better else 'lower'} is better)")
            print(f"{'='*60}")

        results = []
        for order, params in enumerate(points):
            result = self._evaluate_point(
                predictor, dataset, params, order, metric, validity, metrics
            )
            results.append(result)
            if self.verbose:
                mark = '✓' if result.is_valid else '✗'
                detail = f"{metric.name}={result.score:.4f}" if result.score is not None else result.error
                print(f"  {mark} [{order + 1}/{len(points)}] {params}: "
                      f"{result.status.value} ({detail}, {result.runtime:.1f}s)")

        errors = collect_errors(results, self.max_errors_reported)
        ranked = rank_results(results, metric)
        if not ranked:
            raise GridSearchFailure(errors, results)

        ranked = ranked[:self.max_num_results]
        self._warn_on_edges(ranked[0], param_grid)
        predictor.set_params(**ranked[0].params)

        if self.verbose:
            print(f"\n✓ Best: {ranked[0].params} "
                  f"({metric.name}={ranked[0].score:.4f}, "
                  f"{sum(r.is_valid for r in results)}/{len(results)} valid)")
        return GridSearchResult(metric, ranked, results, errors)
