"""
DocGate Backend - Middleware Package
====================================

The admission pipeline. Stage order is fixed in main.build_pipeline():

    Request → [Security Headers] → [Request ID] → [Access Log]
            → [Error Translation] → [GZip] → [Origin Policy]
            → [Rate Limit] → [Body Size] → Router

Stages reject by raising a DocGateError; only the error translator turns
exceptions into responses. Security headers wrap everything, so rejected
requests carry them too.
"""
