"""Version information for confml."""

__version__ = "0.3.0"
__author__ = "confml contributors"
__email__ = ""
__description__ = (
    "Conformal prediction engine: inductive, aggregated, transductive "
    "and Venn-ABERS predictors with grid-search tuning"
)
__url__ = ""
