"""orgs/ -- Organizations, organization-scoped roles, members and invites.

Layer rule: orgs/ imports from core/ only.
api/ and authz/ import from orgs/, not the other way around.
"""
