"""
DocGate Backend - Routes Package
================================

Route Inventory:
    - groups.py:   * /api/{upload,summarize,share,pdf,templates,
                     version-history,export}[/...]  → collaborator
    - health.py:   GET /api/health, GET /           (liveness)
    - fallback.py: anything else                    → 404 Endpoint not found

Routes stay thin: admission already happened in the middleware, so a route
only shapes the request for its collaborator and renders the reply.
"""
