"""
Customers module.

Scope:
- Customer CRUD (list + create + details + edit + delete) keyed by (partition_key, row_key)
- Optional customer photo held in the photo store
- Activity log (audit queue) view and CSV export to the log archive
"""
