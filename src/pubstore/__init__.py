"""
pubstore — digital publication store, license acquisition core.

Turns a (user, publication) pair into a Readium LCP license issued by a
remote License Server, records the resulting entitlement as a transaction
in PostgreSQL, and follows License Status Documents to report the current
state of each entitlement.

Built on a small Railway-Oriented Programming (ROP) kit for explicit,
composable error handling.
"""

__version__ = "0.1.0"
