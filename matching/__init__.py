"""
Matching module - capacity-consistent matching and pairing engine.

This module provides:
- The supervisor capacity ledger
- The application workflow (approve/reject/revise/withdraw)
- Student pairing and supervisor co-supervision request protocols
- Project lifecycle with co-supervision cleanup
- Admin capacity overrides with an audit trail
"""
