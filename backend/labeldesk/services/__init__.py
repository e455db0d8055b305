# Services package init
"""
LabelDesk Backend — Services Layer
====================================

Service Inventory:
    - naming:             pure name generation (unique names, copy names)
    - label_service:      LabelLifecycleService, the operations behind the routes
    - asset_coordinator:  thumbnail objects, signed URLs, URL cache
    - cache_invalidator:  cache keys, TTL classes, cache-aside reads, invalidation
    - blob_store:         local / Supabase / null thumbnail storage
    - cache_store:        memory / Redis cache strategies
    - resilience:         circuit breaker and tenacity retry for remote storage
"""
