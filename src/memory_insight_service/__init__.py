"""Memory Insight Service.

Hybrid (content + tag embedding) retrieval over project memories, and
clustering-driven batch insight generation over a durable job queue.
"""

__version__ = "0.4.0"
