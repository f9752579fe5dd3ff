"""
Store module - Document store abstraction for the matching engine.

This module provides:
- The DocumentStore contract with optimistic, retrying transactions
- An in-memory backend for tests and fakes
- A Django ORM backend storing one JSON document per row
"""
