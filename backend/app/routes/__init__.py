# Routes package init
"""
PixPress Backend — API Routes Package
======================================

Route Inventory:
    - compress.py:  POST /api/compress     (upload and re-encode an image)
    - health.py:    GET  /health           (service health check)
                    GET  /api/formats      (codec capabilities)

Routes stay thin: extract form data, call a service, shape the response.
"""
