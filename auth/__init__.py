"""auth/ -- Session state machine for AuditBoard: storage, identity, bootstrap, guard.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config for settings in auth/dependencies.py.
It does NOT import from api/, web/ or lists/.
api/, web/ and lists/ import from auth/, not the other way around.
"""
