from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict


def write_summary_json(doc: Dict[str, Any], out_dir: str, filename: str) -> str:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2)

    return str(out_path)
