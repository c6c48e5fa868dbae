"""Allow running as `python -m hive_mind`."""

from hive_mind.cli import cli_main

if __name__ == "__main__":
    cli_main()
