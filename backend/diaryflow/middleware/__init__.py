"""
DiaryFlow Backend — Middleware Package
========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID: correlation ID for logs, error bodies and the response header
    2. Logging: one access line per request, tagged with that ID
    3. GZip: compresses responses over 500 bytes
    4. CORS: FastAPI's CORSMiddleware (handles preflight)

    Responses travel back through the chain in reverse order.
"""
