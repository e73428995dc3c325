"""Main function for pupilrecon."""

from pupilrecon.core import cli


def run_main() -> None:
    """Main entry point to pupilrecon."""
    cli.app()


if __name__ == "__main__":
    cli.app()
