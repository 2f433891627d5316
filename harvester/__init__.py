"""Adaptive multi-strategy product harvester.

Harvests product records from curated storefront targets through several
extraction strategies and turns them into a deduplicated, quality-scored
catalog.
"""

__version__ = "0.1.0"
