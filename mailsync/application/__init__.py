"""Application layer: DTOs, services, sync use cases.

Use cases open their own short sessions per page or per state transition,
so they take a session factory rather than a request-scoped session.
"""
