"""Workflow domain concepts.

This package holds first-class types for:
- Workflow definitions (trigger, conditions, ordered actions)
- Stimuli (events, signal observations, schedule ticks, manual calls)
- Condition evaluation and template resolution
- The execution state machine and its sequential action pipeline
- The dispatcher that fans stimuli out to matching workflows

Evaluation is pure; only action executors touch the outside world.
"""

__all__: list[str] = []
