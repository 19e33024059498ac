"""auth/ -- Authentication and authorization core for the school admin backend.

Layer rule: auth/ imports only stdlib + third-party libraries (and core/ for
the Settings type). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
