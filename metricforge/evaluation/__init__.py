"""
metricforge.evaluation — Statistics & Model Evaluation
=======================================================
This subpackage turns model predictions into classification metrics.

Components:
    - statistics.py — EvaluationStats: batch accumulation, sklearn-backed
                      accuracy / precision / recall / F1, confusion matrix
    - outputs.py    — StandardNetwork / GraphNetwork: how to get class
                      scores out of a model
    - evaluator.py  — ModelEvaluator: one-shot test-set evaluation with a
                      written report and a threshold verdict

Information Flow:
    model + test data → ModelEvaluator
        → EvaluationStats → MetricRecord (epoch 0)
        → <model>_evaluation_report_<ts>.txt
        → threshold verdict
"""

from metricforge.evaluation.statistics import EvaluationStats
from metricforge.evaluation.outputs import (
    GraphNetwork,
    ModelOutput,
    StandardNetwork,
    as_model_output,
)
from metricforge.evaluation.evaluator import ModelEvaluator
