"""auth/ -- Session protocol and account flows for SessionKeep.

Layer rule: auth/ imports from core/ and cache/ plus third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
