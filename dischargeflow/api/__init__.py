"""
API orchestration boundary for the discharge service.

Design intent:
- Expose thin, typed endpoints for the record lifecycle.
- Map domain errors onto predictable HTTP status codes.
- Orchestrate workflow operations without embedding domain logic in routers.
"""
