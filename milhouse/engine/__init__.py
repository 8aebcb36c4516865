from milhouse.engine.executor import CodexExecutor, TurnExecutionError, TurnExecutor, TurnResult
from milhouse.engine.loop import LoopEngine, LoopParams, LoopResult

__all__ = [
    "CodexExecutor",
    "LoopEngine",
    "LoopParams",
    "LoopResult",
    "TurnExecutionError",
    "TurnExecutor",
    "TurnResult",
]
