"""Pytest configuration for all tests."""

import sys
import os

# Make the src package importable without installing the project
root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if root_dir not in sys.path:
    sys.path.insert(0, root_dir)
