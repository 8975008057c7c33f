import sys

from deepzoom.cli import main

if __name__ == "__main__":
    sys.exit(main())
