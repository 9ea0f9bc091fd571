"""`python -m interactor` 入口。"""

from __future__ import annotations

from interactor.cli.main import main

if __name__ == "__main__":
    raise SystemExit(main())
