"""CLI command groups for trendline.

Command groups:
- project: Project configuration management
- load: JSONL ingestion (events, people)
- inspect: Schema discovery and stored data summary
- query: Metric queries, text-to-chart, and ad-hoc SQL
"""
