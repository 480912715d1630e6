"""Module entrypoint for `python -m issueradar`.

Forwards to the same main() function as the `issueradar` console script.

Usage:
    ```bash
    python -m issueradar parse https://github.com/pmndrs/jotai
    python -m issueradar digest run <project-id> --pages 2
    ```
"""
import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
