#!/usr/bin/env python3
"""Runs alembic from the repo root, e.g. `scripts/run_alembic.py upgrade head`."""
import os
import sys

# Current directory on sys.path for translation_sync imports in migrations/env.py
sys.path.append(os.getcwd())

from alembic.config import main

if __name__ == '__main__':
    sys.exit(main())
