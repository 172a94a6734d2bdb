"""
Structured discharge document boundary.

Design intent:
- Validate semi-structured generator output against one fixed document shape.
- Flag generated clinical content that has no support in the author's input.
- Keep rendering pure and deterministic for a fixed hospital print format.
"""
