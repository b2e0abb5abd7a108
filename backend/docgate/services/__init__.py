"""
DocGate Backend - Services Layer
================================

Stateful and policy components that the middleware and routes use, all
testable without HTTP:

    - RateLimiter:        fixed-window counters per (route class, client)
    - UploadGuard:        multipart file admission (media type, size)
    - Collaborator:       contract for the external document services
    - HttpCollaborator:   forwarding implementation (httpx + tenacity)
"""
