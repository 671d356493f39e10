"""
Membership Service package for the retail POS backend.

The service fronts the back-office and cashier UIs and stores everything in a
hosted datasheet service, enforcing:
- A single FIFO call governor under the datasheet API's per-second quota
- A short TTL read cache with invalidation on writes
- A uniform success/failure envelope for every operation

Structure:
- app.main: FastAPI app, routes, and composition root.
- app.adapters: HTTP client for the datasheet API.
- app.caching: TTL read cache.
- app.ratelimit: Call governor.
- app.domain: Entity façades and analytics.
"""
