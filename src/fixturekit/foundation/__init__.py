"""Foundation utilities for shared infrastructure components.

This package provides shared utilities including:
- Structured JSON logging
- Retry helpers with exponential backoff
- The execute-once primitive guarding fixture lifecycle transitions
"""
