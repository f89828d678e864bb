"""Seed the demo greenhouse device and rules."""

from __future__ import annotations

import logging

from serra_automation.core.db import SessionLocal, engine
from serra_automation.models import Base
from serra_automation.services.rule_seed import seed_demo_rules


logger = logging.getLogger("scripts.seed_demo_data")


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        try:
            created = seed_demo_rules(db)
        except Exception as exc:
            logger.warning("Seed rules failed: %s", exc)
            return
    logger.info("Demo seed complete. rules_created=%s", created)


if __name__ == "__main__":
    main()
