"""Allow ``python -m plugscan`` (also used to launch the scan worker)."""

from plugscan.cli.main import main

if __name__ == "__main__":
    main()
