"""
metricforge.training — Classifier Training
===========================================
Components:
    - trainer.py — ClassifierTrainer: AdamW / cross-entropy epoch loop that
                   reports every epoch to a MetricsTracker

Information Flow:
    train split → ClassifierTrainer → tracker.on_epoch_end (every epoch)
        → MetricRecords + CSVs (every N epochs)
        → checkpoint_<name>_final.pt
        → threshold verdict on the final record
"""

from metricforge.training.trainer import ClassifierTrainer
