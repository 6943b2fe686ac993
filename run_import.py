#!/usr/bin/env python3
"""
Standalone runner for the PhimAPI import pipeline

Examples:
  python run_import.py page 1
  python run_import.py range 1 20
  python run_import.py resume
  nohup python run_import.py schedule > import.out 2>&1 &
"""
import sys

from phim_etl.cli import main


if __name__ == "__main__":
    sys.exit(main())
