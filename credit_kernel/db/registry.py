"""Import every ORM model module so Base.metadata knows all tables."""


def import_all_orm_models() -> None:
    import credit_batch.models.batch  # noqa: F401
    import credit_config.models  # noqa: F401
    import credit_kernel.models.decision  # noqa: F401
    import credit_kernel.services.sequence_service  # noqa: F401
