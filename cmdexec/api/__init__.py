"""HTTP API layer (FastAPI).

This module exposes a small, versioned `/api/v1` surface to:
- submit a whitelisted command for background execution
- poll an execution's status and output
- request that a running execution be killed

The API is intentionally thin: core behavior lives in `cmdexec/runtime` and `cmdexec/storage`.
"""
