"""espcli - Python module execution entry.

Usage:
    python -m cli doctor
    python -m cli build --target esp32s3
"""

from cli import main

if __name__ == "__main__":
    main()
