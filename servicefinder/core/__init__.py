"""Core utilities and shared application primitives.

Modules in this package hold configuration, validation, the local listing
query logic and the per-client session state. Apart from the FastAPI
request helpers they are framework-agnostic.
"""
