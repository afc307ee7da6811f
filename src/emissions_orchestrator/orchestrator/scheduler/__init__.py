"""Block-driven scheduling.

- the block event loop (one callback pass per observed height)
- the trigger policy and the one-shot force-start signal
- the persisted cursor used for crash recovery
"""

__all__: list[str] = []
