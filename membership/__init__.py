"""membership/ -- Access requests: submission, review and member provisioning.

Layer rule: membership/ imports from core/ and auth/. It does NOT import from
api/ or web/.
"""
