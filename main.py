#!/usr/bin/env python3
"""
GCE Test Host Provisioner

- Provision test hosts (boot disk, instance, firewall rule) by default
- Tear them down with --teardown
- Print the latest image for a platform with --resolve-image

This script supports running directly from a source checkout that uses a
src/ layout: it adds the local `src/` directory to sys.path before importing.
For production use, prefer installing the project and using the provided
console script.

Examples:
  python3 main.py --project my-project --host web1:centos-7-x86_64 --dry-run
  python3 main.py --project my-project --host web1:centos-7-x86_64
  python3 main.py --project my-project --host web1 --teardown
  python3 main.py --project my-project --resolve-image debian-10-x86_64
"""

import os
import sys

REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
