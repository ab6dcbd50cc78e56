"""auth/ -- Credential lifecycle for sessionkeeper.

Tokens, password policy, user and one-time-code stores, notification sinks,
and the SessionManager that ties them together.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
