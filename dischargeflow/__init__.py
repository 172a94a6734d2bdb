"""
Dischargeflow service package.

Design intent:
- Manage the discharge summary lifecycle from author draft to approved document.
- Keep domain modules (document/enhance/workflow) independent from the HTTP surface.
"""
