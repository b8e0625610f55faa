"""
credit_ingestion -- Profile-driven mapping and validation of uploaded rows.

Turns opaque raw rows into typed CreditRecords and checks them before they
reach a scoring engine.  Pure functions only; staging and persistence live
in credit_batch.
"""
