from __future__ import annotations

from role_keeper.config import load_config
from role_keeper.logging import configure_logging
from role_keeper.telegram.app import run


def main() -> None:
    config = load_config()
    configure_logging(config)
    run()


if __name__ == "__main__":
    main()
