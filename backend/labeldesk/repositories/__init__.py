# Repositories package init
"""
LabelDesk Backend — Persistence Interfaces
============================================

What:  Abstract stores the services depend on, plus their SQLAlchemy
       implementations.

Inventory:
    - LabelStore / SqlLabelStore:        label rows, conditional updates
    - ProjectAccess / SqlProjectAccess:  ownership checks

Services receive these through their constructor, so tests swap in
in-memory fakes without touching a database.
"""
