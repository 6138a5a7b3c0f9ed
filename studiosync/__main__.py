from __future__ import annotations

from studiosync.server import main


if __name__ == "__main__":
    main()
