"""
Finding Override Service
========================

Back-office engine for finding overrides:
1. Versioned draft/published overrides for finding dimensions and messages
2. Effective value resolution (override, else seed baseline)
3. Publish / rollback with an append-only audit trail
4. Deterministic final-priority resolution
"""

__version__ = "1.0.0"
