#!/usr/bin/env python3
"""
Docker Events Dispatcher - Direct Entry Point
==============================================
Run this file directly to start the dispatcher from a source checkout.

Usage:
    python run.py                          # Dispatch events from the default socket
    python run.py -H tcp-host:2375 -v      # Use a TCP endpoint, verbose output
    python run.py hooks                    # List hooks that would run
    python run.py --help                   # Show all options
"""

import os
import sys

# Add parent directory to path if running directly
if __name__ == "__main__":
    script_dir = os.path.dirname(os.path.abspath(__file__))
    if script_dir not in sys.path:
        sys.path.insert(0, script_dir)


def main():
    """Main entry point"""
    try:
        from docker_events_dispatcher.cli.main import main_entry
    except ImportError as e:
        print(f"Import Error: {e}")
        print("\nMake sure you've installed dependencies:")
        print("  pip install -e .")
        sys.exit(1)

    main_entry()


if __name__ == "__main__":
    main()
