from credit_batch.services.executor import ExecutorSettings, ImportExecutor

__all__ = ["ExecutorSettings", "ImportExecutor"]
