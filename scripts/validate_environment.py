#!/usr/bin/env python3
"""Validate local admission engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import replace
from datetime import date, timedelta
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.admission_gate import AdmissionGate
from admission_engine.services.stay_admission_service import StayAdmissionService
from admission_engine.services.stay_planner import StayAdmissionPlanner
from admission_engine.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="admission-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "admission_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo seeding
        try:
            repository.seed_demo_data()
            with sqlite3.connect(validation_settings.database_path) as conn:
                resources = int(conn.execute("SELECT COUNT(*) FROM Resources;").fetchone()[0])
                passes = int(conn.execute("SELECT COUNT(*) FROM Passes;").fetchone()[0])
            if resources == 0 or passes == 0:
                raise RuntimeError(f"expected seeded rows, got {resources} resources, {passes} passes")
            ok, line = _print_result(
                "Demo seeding",
                True,
                f": {resources} resources, {passes} passes",
            )
        except Exception as exc:
            ok, line = _print_result("Demo seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Stay availability and admission
        arrival = date.today() + timedelta(days=30)
        departure = arrival + timedelta(days=validation_settings.stay_minimum_days)
        try:
            planner = StayAdmissionPlanner(repository=repository, settings=validation_settings)
            report = planner.check_stay_availability(arrival, departure)
            if not report.has_full_match:
                raise RuntimeError("no fully available apartment on an empty calendar")
            chosen = report.options[0].resource.resource_id
            admission = StayAdmissionService(
                repository=repository,
                settings=validation_settings,
            ).admit_stay(arrival, departure, resource_id=chosen)
            ok, line = _print_result(
                "Stay admission",
                True,
                f": resource={chosen} stay={admission.stay_id[:8]}",
            )
        except Exception as exc:
            ok, line = _print_result("Stay admission", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Pass admission
        try:
            gate = AdmissionGate(repository=repository, settings=validation_settings)
            pass_id = repository.list_passes()[0].pass_id
            booking_id = gate.admit_pass(pass_id, arrival)
            ok, line = _print_result("Pass admission", True, f": booking={booking_id}")
        except Exception as exc:
            ok, line = _print_result("Pass admission", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Admission Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
