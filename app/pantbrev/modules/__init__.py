"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its routes and templates,
while reusing platform primitives (session gate, RBAC, audit, backend client).
"""
