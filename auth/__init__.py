"""auth/ -- Credential and proof-of-possession engine for LightAuth.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and mail/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
