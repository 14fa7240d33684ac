"""Command-line interface."""
from colourreproduction.main import main

if __name__ == "__main__":
    main()
