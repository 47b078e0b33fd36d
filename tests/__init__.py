"""
Test Suite for Transcript Learning

This package contains all tests for the learning core:
- Record Store, Scoring, Search, Aggregation, Recommendation
- Learning cycle, configuration, and the HTTP API
"""
