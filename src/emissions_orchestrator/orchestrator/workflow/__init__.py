"""The emission workflow.

A run is an explicit context plus a linear list of steps executed by the
step sequencer. The runner ties it to the scheduler: decide, run, and only
advance the cursor on completion.
"""

__all__: list[str] = []
