"""Conformal and Venn-ABERS predictors"""

from .base import Predictor, AggregatedPredictor
from .icp import ICPClassifier, ICPRegressor
from .acp import ACPClassifier, ACPRegressor
from .tcp import TCPClassifier
from .vap import VAPClassifier, VAPPrediction, IVAPMember, merge_intervals

__all__ = [
    'Predictor',
    'AggregatedPredictor',
    'ICPClassifier',
    'ICPRegressor',
    'ACPClassifier',
    'ACPRegressor',
    'TCPClassifier',
    'VAPClassifier',
    'VAPPrediction',
    'IVAPMember',
    'merge_intervals',
]
