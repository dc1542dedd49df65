"""Error taxonomy for the nested cross-validation engine.

Every error carries the pipeline stage and, where known, the outer fold and
hyperparameter configuration it came from so that a failed run can be
reproduced from the log alone.
"""

from __future__ import annotations


class NestedCVError(Exception):
    """Base class for errors raised by the evaluation engine."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        fold: int | None = None,
        config_index: int | None = None,
    ) -> None:
        self.stage = stage
        self.fold = fold
        self.config_index = config_index
        super().__init__(message)

    def __str__(self) -> str:
        context = []
        if self.stage is not None:
            context.append(f"stage={self.stage}")
        if self.fold is not None:
            context.append(f"fold={self.fold}")
        if self.config_index is not None:
            context.append(f"config={self.config_index}")
        message = super().__str__()
        if context:
            return f"{message} [{', '.join(context)}]"
        return message


class InvalidPartitionError(NestedCVError):
    """Stratified split impossible for the requested number of folds. Fatal."""


class CalibrationConvergenceError(NestedCVError):
    """Platt scaling fit did not converge. Recoverable at fold level."""


class TrainerFailure(NestedCVError):
    """Model training failed for a configuration.

    Makes one grid candidate ineligible during tuning; fatal when no candidate
    survives or when the final outer-fold model cannot be trained.
    """


class ExternalComputationError(NestedCVError):
    """Feature attribution failed for one fold. Recoverable."""
