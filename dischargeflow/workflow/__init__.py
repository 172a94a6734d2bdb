"""
Discharge workflow boundary.

Design intent:
- Own the status transition table and reject anything it does not list.
- Freeze the approved text from an explicit ordered fallback chain.
- Keep notification best-effort so delivery failures never undo approval.
"""
