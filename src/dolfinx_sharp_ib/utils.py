"""
Utility functions for dolfinx-sharp-ib.

Provides config loading, results-directory bookkeeping, and the Newton
iteration table and history CSV.
"""

from __future__ import annotations

import csv
import dataclasses
import json
import math
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, TypeVar

import numpy as np

T = TypeVar("T")


def load_json_config(config_path: str | Path) -> dict[str, Any]:
    """Load JSON configuration file."""
    p = Path(config_path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return json.loads(p.read_text())


def dc_from_dict(cls: type[T], data: Mapping[str, Any] | None, *, name: str = "config") -> T:
    """
    Build a dataclass instance from a mapping with strict validation.

    Unknown keys and missing required fields raise ValueError; keys starting
    with "_" are dropped so JSON files can carry comments. JSON lists are
    turned into tuples for tuple-typed fields (box corners, centers).
    """
    data = {} if data is None else dict(data)
    data = {k: v for k, v in data.items() if not str(k).startswith("_")}

    fields = dataclasses.fields(cls)
    unknown = sorted(set(data) - {f.name for f in fields})
    if unknown:
        raise ValueError(f"Unknown keys in {name}: {unknown}")

    missing = sorted(
        f.name
        for f in fields
        if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING and f.name not in data
    )
    if missing:
        raise ValueError(f"Missing keys in {name}: {missing}")

    return cls(**{k: tuple(v) if isinstance(v, list) else v for k, v in data.items()})


def print_dc_json(obj: Any) -> None:
    """Print a dataclass (or dict) as stable, sorted JSON."""
    payload = dataclasses.asdict(obj) if dataclasses.is_dataclass(obj) else obj
    print(json.dumps(payload, indent=2, sort_keys=True))


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True))


@dataclasses.dataclass(frozen=True)
class CasePaths:
    case_dir: Path
    summary_json: Path
    run_info_json: Path
    config_used_json: Path

    def level_file(self, stem: str, n: int, suffix: str) -> Path:
        """Per-refinement-level output, e.g. history_n16.csv."""
        return self.case_dir / f"{stem}_n{n}{suffix}"


def prepare_case_dir(out_dir: str | Path, *, config_path: Path | None, cfg: Mapping[str, Any]) -> CasePaths:
    """
    Create the results folder with config_used.json and run_info.json.

    run_info.json records the package, Python and numpy versions next to the
    resolved config so a refinement table can be traced back to its run.
    """
    from dolfinx_sharp_ib import __version__

    case_dir = Path(out_dir)
    case_dir.mkdir(parents=True, exist_ok=True)
    paths = CasePaths(
        case_dir=case_dir,
        summary_json=case_dir / "summary.json",
        run_info_json=case_dir / "run_info.json",
        config_used_json=case_dir / "config_used.json",
    )

    write_json(paths.config_used_json, dict(cfg))
    write_json(
        paths.run_info_json,
        {
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
            "config_path": str(config_path) if config_path else None,
            "dolfinx_sharp_ib_version": __version__,
            "python_version": sys.version.split()[0],
            "numpy_version": np.__version__,
        },
    )
    return paths


def fmt_sci(x: float, *, prec: int = 1) -> str:
    """Scientific notation; non-finite values print as nan."""
    if not math.isfinite(float(x)):
        return "nan"
    return f"{float(x):.{prec}e}"


class StepTablePrinter:
    """
    Right-aligned iteration table, header printed before the first row.

    Example:
        table = StepTablePrinter([("iter", 5), ("alpha", 9), ("residual", 10)])
        table.row([3, "5.00e-01", "1.234e-04"])
    """

    def __init__(self, columns: list[tuple[str, int]], *, enabled: bool = True) -> None:
        self.columns = list(columns)
        self.enabled = enabled
        self._printed_header = False

    def row(self, values: list[object]) -> None:
        if len(values) != len(self.columns):
            raise ValueError(f"Expected {len(self.columns)} columns, got {len(values)} values")
        if not self.enabled:
            return
        if not self._printed_header:
            print(" ".join(label.rjust(width) for label, width in self.columns), flush=True)
            self._printed_header = True
        print(" ".join(str(v).rjust(width) for (_, width), v in zip(self.columns, values)), flush=True)


class HistoryWriterCSV:
    """
    Newton history, one row per residual evaluation.

    Each writer starts a fresh file; keys outside `fieldnames` are ignored and
    floats are written at full precision.
    """

    def __init__(self, path: Path, fieldnames: list[str]) -> None:
        self.path = Path(path)
        self.fieldnames = list(fieldnames)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "w", newline="")
        self._writer = csv.DictWriter(self._fh, fieldnames=self.fieldnames, extrasaction="ignore")
        self._writer.writeheader()

    def __enter__(self) -> HistoryWriterCSV:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def write(self, row: Mapping[str, object]) -> None:
        if self._fh is None:
            raise ValueError(f"History file {self.path} is closed")
        self._writer.writerow({k: f"{v:.16e}" if isinstance(v, float) else v for k, v in row.items()})
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


def read_history_csv(path: str | Path) -> dict[str, list[float]]:
    """Read a history CSV back into columns of floats (non-numeric cells become NaN)."""
    columns: dict[str, list[float]] = {}
    with open(path, newline="") as fh:
        for row in csv.DictReader(fh):
            for k, v in row.items():
                try:
                    value = float(v)
                except (TypeError, ValueError):
                    value = float("nan")
                columns.setdefault(k, []).append(value)
    return columns
