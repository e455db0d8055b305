# Routes package init
"""
LabelDesk Backend — API Routes Package
========================================

Route Inventory:
    - labels.py:  /api/projects/{project_id}/labels[...], /api/labels/{label_id}[...]
    - files.py:   GET /api/files/{path}  (signed thumbnails, local storage)
    - health.py:  GET /health

Handlers stay thin: they read the caller and the body, call
LabelLifecycleService, and leave error formatting to the global handlers.
"""
