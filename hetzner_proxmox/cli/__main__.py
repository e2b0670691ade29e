"""
Entry point for running the CLI as a module: python -m hetzner_proxmox.cli
"""

import sys

from hetzner_proxmox.cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
