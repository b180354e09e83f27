from __future__ import annotations

from pos_sync.entrypoints.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
