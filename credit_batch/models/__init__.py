from credit_batch.models.batch import CreditRecordModel, ImportBatchModel

__all__ = ["CreditRecordModel", "ImportBatchModel"]
