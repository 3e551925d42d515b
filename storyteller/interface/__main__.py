# ABOUTME: Entry point for launching the terminal play loop.
# ABOUTME: Run with: python -m storyteller.interface

from storyteller.interface.cli import main

if __name__ == "__main__":
    main()
