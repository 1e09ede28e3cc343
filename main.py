"""
Main entry point for the Sentinel ingestion and auto-publish service.
"""

import os
import sys

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sentinel.app import main


if __name__ == "__main__":
    main()
