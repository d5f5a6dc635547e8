# Middleware package init
"""
PixPress Backend — Middleware Package
======================================

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID: correlation ID for every later log line
    2. Logging: records status, duration and the decode tier header
    3. CORS: applied by FastAPI's CORSMiddleware (handles preflight)
"""
