"""
Tests package - Test suite for the approved-secrets backend.

Contains:
- unit/: Unit tests for individual components and workflow scenarios
"""
