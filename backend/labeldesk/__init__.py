"""
LabelDesk Backend — Application Package
=========================================

Layers:

    ┌─────────────────────────────────────┐
    │        Routes (HTTP surface)        │  ← thin FastAPI handlers
    ├─────────────────────────────────────┤
    │   Services (label lifecycle core)   │  ← naming, versioning, thumbnails
    ├─────────────────────────────────────┤
    │  Repositories / Blob & Cache stores │  ← injected collaborators
    ├─────────────────────────────────────┤
    │      Models & Database (SQL)        │  ← async SQLAlchemy
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
