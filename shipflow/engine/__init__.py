"""Workflow orchestration engine.

Key Components:
    - run_parallel: Order-preserving concurrent fan-out
    - ProgressTracker: Ordered step state machine with progress output
    - WorkflowState: Lifecycle record of one invocation
    - RetryableMutation: Idempotent mutation policy
    - WorkflowContext: Per-invocation collaborators (shipflow.engine.context)
    - WorkflowDriver: The release state machine (shipflow.engine.driver)
"""
