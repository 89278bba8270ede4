"""Core turn primitives (context stacking, message stream, and event trace).

Kept free of FastAPI and Redis concerns so it can be reused by API routes, the
orchestrator, and tests.
"""
