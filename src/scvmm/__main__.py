"""Main entry point dispatcher for scvmm commands."""

import sys


def main():
    """Dispatch to appropriate submodule based on command."""
    print("Use 'python -m scvmm.controller' to run the controller agent")
    print("Use 'python -m scvmm.cli' or 'scvmmctl' for the command-line interface")
    sys.exit(1)


if __name__ == "__main__":
    main()
