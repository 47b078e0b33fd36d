"""
Transcript Learning Module

Learning-data storage and retrieval core for a transcript analysis tool
that classifies Japanese meeting notes, personal memos, and proposals.

Components (leaf-first):
- Record Store: patterns, method effectiveness, file type judgments,
  method feedback (SQLAlchemy over SQLite)
- Scoring Engine: effectiveness (0-100), satisfaction (1-5), trends
- Search & Relevance Engine: keyword/category/date search, relevance,
  hybrid full-text ranking
- Aggregation & Trend Engine: windowed rollups, bands, top performers,
  statistical flags, judgment accuracy
- Recommendation Layer: approach and method suggestions
- Learning Cycle: one-call capture of a confirmed analysis

The classifier itself, CLI, and report rendering live outside this package.
"""

__version__ = "1.0.0"
