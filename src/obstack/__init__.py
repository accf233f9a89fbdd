"""
obstack - Staged bring-up of an OceanBase single-node stack.

- obstack.core: Logging and error primitives
- obstack.deploy: Deployment orchestration (stages, readiness, reports)
- obstack.cli: Terminal entry point (``obstack deploy run``)
"""

__version__ = "0.1.0"
