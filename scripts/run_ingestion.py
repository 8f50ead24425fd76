"""
Script to run the ingestion pipeline for one stream.

    python scripts/run_ingestion.py --stream records --batch-size 34
"""

import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from ingestion.cli import main


if __name__ == "__main__":
    sys.exit(main())
