from __future__ import annotations

from control_room.core.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
