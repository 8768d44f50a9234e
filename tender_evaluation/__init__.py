"""
TenderEvaluation — Multi-evaluator tender scoring and decision engine

Turns committee members' per-criterion scores into a ranked list of
bidders under the tender's evaluation methodology (QCBS, LCS, QBS, FBS)
and gates the result through a chairman approval or revision decision.
"""

__version__ = "1.0.0"
__author__ = "TenderEvaluation"
