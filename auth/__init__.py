"""auth/ -- Authentication and role-based access control for authgate.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or main.py.
api/ and main.py import from auth/, not the other way around.
"""
