"""Allow running the CLI as ``python -m scvmm.cli``."""

from scvmm.cli.main import main


if __name__ == "__main__":
    main()
