"""auth/ -- Grant-processing and credential-lifecycle engine for Tollgate.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
