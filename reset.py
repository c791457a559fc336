#!/usr/bin/env python3
from pathlib import Path
import os
import sys
import subprocess

root = Path(__file__).resolve().parent
db = Path(os.environ.get("COMPLETION_DB", root / "completion.db"))
for suffix in ("", "-wal", "-shm"):
    p = Path(f"{db}{suffix}")
    if p.exists():
        p.unlink()
subprocess.run([sys.executable, str(root / "db_setup.py")], check=True)
