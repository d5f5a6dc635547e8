"""
PixPress Backend — Application Package Initializer
===================================================

What: Marks the `app` directory as a Python package.
Why:  Enables module imports like `from app.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by pytest, uvicorn
      and the diagnostic scripts.

Architecture Note:
    This backend follows a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Compression Service (Fallbacks)   │  ← buffer → path → converter tiers
    ├─────────────────────────────────────┤
    │  Upload / Image / Converter Services│  ← disk, Pillow, CLI tool
    └─────────────────────────────────────┘

    Routes parse the multipart form and shape the response; every decode,
    resize and encode call is delegated to Pillow through ImageService.
"""

__version__ = "1.0.0"
