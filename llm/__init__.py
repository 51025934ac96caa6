"""
LLM integration for spending categorization.

This package contains:
- classify: Classification with validation and re-asking
- client: OpenRouter client wrapper
- prompts: System and user prompt builders
"""
