"""
DocGate Backend - Application Package
=====================================

What: The request-admission front door for the document API.
How:  Every request passes an ordered middleware pipeline (security headers,
      origin policy, rate limiting, body/upload admission) before a route
      group forwards it to the external collaborator that owns the domain
      logic (summaries, PDFs, sharing, exports, templates, version history).

Layout:
    ┌─────────────────────────────────────┐
    │     Middleware (admission stages)   │  ← policy, no domain logic
    ├─────────────────────────────────────┤
    │     Routes (route groups, health)   │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (limiter, guards, collab) │  ← testable without HTTP
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
