#!/usr/bin/env python3
"""Regenerate batch summary JSON/CSV from a batch.jsonl checkpoint."""
from __future__ import annotations

import argparse
import csv
import json
from pathlib import Path
from typing import Any, Dict, List


def _load_results(jsonl_path: Path) -> List[Dict[str, Any]]:
    results: List[Dict[str, Any]] = []
    if not jsonl_path.exists():
        return results
    with jsonl_path.open("r", encoding="utf-8") as jf:
        for lineno, line in enumerate(jf, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                results.append(json.loads(line))
            except json.JSONDecodeError:
                print(f"skipping malformed line {lineno} in {jsonl_path}")
    return results


def main():
    parser = argparse.ArgumentParser(description="Summarize coverage batch results")
    parser.add_argument("--input", default="batch_runs/batch.jsonl", help="JSONL file with batch results")
    parser.add_argument("--output", default="batch_runs", help="Directory for summary.json/summary.csv")
    parser.add_argument("--sort", default="team_survivability_mean", help="Column to rank configurations by")
    args = parser.parse_args()

    input_path = Path(args.input)
    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    summary_json = out_dir / "summary.json"
    summary_csv = out_dir / "summary.csv"

    results = _load_results(input_path)
    summaries: List[Dict[str, Any]] = []
    for res in results:
        summaries.append(
            {
                "label": res.get("label"),
                "policy": res.get("policy"),
                "breakable": res.get("breakable"),
                "agents": res.get("agents"),
                "scenario": res.get("scenario", "coverage"),
                "runs": res.get("runs"),
                "steps_mean": res.get("steps_mean"),
                "steps_std": res.get("steps_std"),
                "coverage_mean": res.get("coverage_mean"),
                "team_survivability_mean": res.get("team_survivability_mean"),
                "team_survivability_std": res.get("team_survivability_std"),
            }
        )
    summaries.sort(key=lambda row: (row.get(args.sort) is None, -(row.get(args.sort) or 0)))

    summary_json.write_text(json.dumps(summaries, indent=2, ensure_ascii=False), encoding="utf-8")

    fieldnames = [
        "label",
        "policy",
        "breakable",
        "agents",
        "scenario",
        "runs",
        "steps_mean",
        "steps_std",
        "coverage_mean",
        "team_survivability_mean",
        "team_survivability_std",
    ]
    with summary_csv.open("w", encoding="utf-8", newline="") as cf:
        writer = csv.DictWriter(cf, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(summaries)

    print(f"Wrote {len(summaries)} rows to {summary_json} and {summary_csv}")


if __name__ == "__main__":
    main()
