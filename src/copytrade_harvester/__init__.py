"""Copy-trading lead project harvester.

Crawls exchange copy-trading rank and detail pages and turns repeated,
rate-limited snapshots into deduplicated crawl progress, project visibility
history and trade records.
"""

__version__ = "0.1.0"
