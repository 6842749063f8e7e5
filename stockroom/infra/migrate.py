from __future__ import annotations

import os
import sys

from alembic import command
from alembic.config import Config

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def _config() -> Config:
    return Config(ALEMBIC_CONFIG)


def upgrade(revision: str = "head") -> None:
    command.upgrade(_config(), revision)


def downgrade(revision: str) -> None:
    command.downgrade(_config(), revision)


if __name__ == "__main__":
    upgrade(sys.argv[1] if len(sys.argv) > 1 else "head")
