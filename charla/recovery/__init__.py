# recovery/__init__.py
from charla.recovery.observer import StallObserver
from charla.recovery.reconciler import RecoveryConfig, RecoveryReconciler, RecoveryReport

__all__ = ["StallObserver", "RecoveryConfig", "RecoveryReconciler", "RecoveryReport"]
