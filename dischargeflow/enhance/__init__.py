"""
Text enhancement boundary.

Design intent:
- Turn a terse clinical draft into a validated structured document.
- Treat every generator failure as ordinary and fall through to the next strategy.
- Always finish with a deterministic, network-free fallback of the same shape.
"""
