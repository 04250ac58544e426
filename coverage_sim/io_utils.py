"""IO utilities for batch experiments."""
from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence


def ensure_dir(path: str) -> Path:
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def save_json(data: Any, path: str) -> None:
    Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def load_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def save_rows(rows: Iterable[Mapping[str, Any]], path: str, fieldnames: Optional[Sequence[str]] = None) -> None:
    rows = list(rows)
    if fieldnames is None:
        names: List[str] = []
        for row in rows:
            for key in row:
                if key not in names:
                    names.append(key)
        fieldnames = names
    with open(path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(fieldnames))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def save_hazard_field(text: str, path: str) -> None:
    Path(path).write_text(text + "\n", encoding="utf-8")


def load_hazard_field(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


__all__ = ["ensure_dir", "save_json", "load_json", "save_rows", "save_hazard_field", "load_hazard_field"]
