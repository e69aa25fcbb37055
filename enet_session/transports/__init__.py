"""
Engine implementations, imported on demand by `make_engine()`:
- enet: pyenet bindings (optional dependency)
- loopback: in-process engine
"""
