"""
Coordination primitives for the workspace client.

Everything here runs on one asyncio event loop. Mutual exclusion is structural: a
single pending-operation cell per resource, never a lock.
"""
