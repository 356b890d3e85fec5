"""Step pipeline used by every worker to express one transaction."""

from transaction_bridge.pipeline.steps import (
    Pipeline,
    RecoveryPolicy,
    Step,
    StepResults,
    run_pipeline,
)

__all__ = ["Pipeline", "RecoveryPolicy", "Step", "StepResults", "run_pipeline"]
