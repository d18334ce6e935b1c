"""
Component Registry

Explicit name -> factory tables for every pluggable component, built at
import time from the tables each module exports. Nothing is discovered
dynamically; extensions call ``register``.

Examples
--------
>>> alg = create('classifier', 'LinearSVC', C=0.5)
>>> ncm = create('classification_ncm', 'NegativeDistanceToHyperplane', alg)
>>> available('sampler')
['Bootstrap', 'Folded', 'Random']
"""

from typing import Any, Callable, Dict, List

from .algorithms import CLASSIFIERS, REGRESSORS
from .evaluation.metrics import METRICS
from .evaluation.testing import TESTING_STRATEGIES
from .exceptions import InvalidInputError
from .nonconformity import CLASSIFICATION_NCMS, PVALUE_CALCULATORS, REGRESSION_NCMS
from .sampling import SAMPLERS

REGISTRY: Dict[str, Dict[str, Callable[..., Any]]] = {
    'classifier': dict(CLASSIFIERS),
    'regressor': dict(REGRESSORS),
    'classification_ncm': dict(CLASSIFICATION_NCMS),
    'regression_ncm': dict(REGRESSION_NCMS),
    'pvalue': dict(PVALUE_CALCULATORS),
    'sampler': dict(SAMPLERS),
    'metric': dict(METRICS),
    'testing': dict(TESTING_STRATEGIES),
}


def _kind_table(kind: str) -> Dict[str, Callable[..., Any]]:
    if kind not in REGISTRY:
        raise InvalidInputError(
            f"Unknown component kind '{kind}'. Available: {sorted(REGISTRY)}"
        )
    return REGISTRY[kind]


def available(kind: str) -> List[str]:
    """Registered names of one component kind, sorted."""
    return sorted(_kind_table(kind))


def register(kind: str, name: str, factory: Callable[..., Any], replace: bool = False) -> None:
    """
    Register a factory under ``name``.

    Raises
    ------
    InvalidInputError
        If the name is taken and ``replace`` is False
    """
    table = _kind_table(kind)
    if name in table and not replace:
        raise InvalidInputError(f"{kind} '{name}' is already registered")
    if not callable(factory):
        raise InvalidInputError(f"factory for {kind} '{name}' is not callable")
    table[name] = factory


def create(kind: str, name: str, *args, **kwargs) -> Any:
    """Instantiate the component registered as ``name``."""
    table = _kind_table(kind)
    if name not in table:
        raise InvalidInputError(
            f"Unknown {kind} '{name}'. Available: {sorted(table)}"
        )
    return table[name](*args, **kwargs)
