"""
Pytest configuration for test discovery and imports.

The provisioner modules live flat under src/; put that directory on sys.path
so tests can import them directly without installing the project.
"""

import os
import sys

ROOT_DIR = os.path.dirname(os.path.abspath(__file__))
SRC_DIR = os.path.join(ROOT_DIR, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
