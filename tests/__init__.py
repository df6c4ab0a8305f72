"""
POI Overlay Engine Test Suite

This package contains tests for the orientation fusion, point store and bearing ranking engine.

Structure:
- unit/: Unit tests for individual components
- integration/: Integration tests for sensor -> orientation and location -> ranking flows
"""
