"""
Topic indexing components.

- Matcher: keyword crawl, topic rules, crawl cache and deduplication
- Reconciler: idempotent creation of missing reference links per index page
- Hierarchy: bounded walk of a collection's node tree
- Aggregation: statistics and export over shortcut records
"""
