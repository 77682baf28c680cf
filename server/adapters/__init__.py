"""Cloud provider adapters for event functions.

This package contains adapters that transform cloud-specific event formats
(e.g., AWS Lambda events) into the universal HTTP format expected by
FunctionHandler.

Each adapter handles:
- Event format transformation (cloud-specific -> universal)
- Response format transformation (universal -> cloud-specific)
- Cloud-specific context extraction (request IDs, remaining time, etc.)
"""

from .aws_lambda import make_lambda_handler

__all__ = ["make_lambda_handler"]
