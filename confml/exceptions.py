"""
Error Taxonomy for confml

Every error raised on purpose by the library derives from ConformalError.
Argument and data problems are also ValueErrors and "not trained" problems
are also RuntimeErrors, so plain ``except ValueError`` handlers keep working.
"""

from typing import List, Optional, Sequence


class ConformalError(Exception):
    """Base class for all confml errors."""


class InvalidInputError(ConformalError, ValueError):
    """
    Malformed input: bad records, wrong label cardinality, empty
    calibration set, unknown parameter names or out-of-range arguments.
    """


class UntrainedPredictorError(ConformalError, RuntimeError):
    """A prediction was requested from a predictor that is not trained."""


class AlreadyTrainedError(ConformalError, RuntimeError):
    """A train-once predictor was retrained or reconfigured; use clone()."""


class KeyMismatchError(ConformalError):
    """
    Decryption of a model bundle failed or produced content that does not
    match the stored digests. Raised instead of returning corrupted data so
    callers can ask for a different key.
    """


class AggregationMismatchError(ConformalError, ValueError):
    """Bundles that do not belong to the same aggregated model were merged."""


class EvaluationFailure(ConformalError):
    """
    Train/evaluate cycle failed.

    Raised by TestRunner when too many folds fail. GridSearch records it per
    grid point instead of letting it abort the search.
    """


class GridSearchFailure(EvaluationFailure):
    """
    No grid point produced a valid result.

    Parameters
    ----------
    messages : list of str
        Deduplicated per-point error messages (capped)
    results : list of GridPointResult, optional
        Every evaluated grid point, in grid order
    """

    def __init__(self, messages: Sequence[str], results: Optional[List] = None):
        self.messages = list(messages)
        self.results = list(results) if results is not None else []
        summary = "; ".join(self.messages) if self.messages else "no error details"
        super().__init__(
            f"Grid search failed: no parameter combination produced a valid "
            f"result ({len(self.results)} evaluated). Errors: {summary}"
        )
