"""
Core modules for the spending categorization pipeline.

This package contains:
- config: Application configuration and settings
- db: Database access, schema, category and partner lookups
- job_store: Persistence of categorization jobs and their spendings
- apportionment: Line item validation and category resolution
- exceptions: Custom exception classes
- logger: Logging configuration
- schema: Pydantic models for data validation
"""
