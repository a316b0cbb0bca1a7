"""authz/ -- Per-organization authorization core.

Decides whether an authenticated user may act inside an organization, using
the look-aside cache in front of the stores.

Layer rule: authz/ imports from core/, auth/, orgs/ and cache/. It never
imports FastAPI; auth/dependencies.py adapts it to Depends().
"""
