"""
credit_batch -- Batch import of partner credit records.

Stages raw rows, evaluates them through mapping, validation, scoring and
the lending policy on a bounded worker pool, records every decision, and
keeps batch counters under a single writer.

Architecture:
    credit_batch/ is a top-level package.  Nothing in credit_kernel,
    credit_config, credit_ingestion or credit_engines imports from it.
"""
