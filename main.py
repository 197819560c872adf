#!/usr/bin/env python3
"""
Main entry point for the UDP-over-TLS pipe client.
"""
import sys

from udptlspipe.client.client import main

if __name__ == "__main__":
    sys.exit(main())
