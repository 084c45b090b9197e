#!/usr/bin/env python
from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from orgchart.models import OrgNode
from orgchart.services.org_integrity import check_sibling_chains


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    with Session(engine) as session:
        nodes = list(session.scalars(select(OrgNode).order_by(OrgNode.created_at, OrgNode.id)).all())
        report = check_sibling_chains(nodes)

    return {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "chain_report": report.to_dict(),
    }


def main() -> int:
    report = run()
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0 if report["chain_report"]["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
