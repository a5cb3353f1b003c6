"""Backend for the asy-eval compile server.

Route handlers in server.py stay thin; the pieces live here:
- signed pseudonymous session tokens
- per-request compile workspaces with TTL cleanup
- the tool chain table and the process runner with per-step deadlines
- the compile pipeline and the usage counter

Security note:
Identities are attribution, not authorization. Anyone holding a session
cookie is that identity; the cookie only has to be unforgeable, which is
why SECRET_KEY must be set in production.
"""
