"""Job progress and priced-result sinks for Google Sheets and local files."""

from __future__ import annotations

import csv
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import gspread
from google.oauth2.service_account import Credentials

from .models import PricedProduct, SearchJob

LOGGER = logging.getLogger(__name__)

JOB_HEADERS = ["job_id", "status", "found", "processed", "message", "updated_at"]

PRICED_HEADERS = [
    "job_id",
    "product_id",
    "product_name",
    "category",
    "rating",
    "rating_estimated",
    "variant_id",
    "sku",
    "size",
    "color",
    "unit_price_usd",
    "shipping_usd",
    "shipping_estimated",
    "carrier",
    "delivery_days",
    "landed_cost",
    "retail_price",
    "profit",
    "available",
    "stock",
    "needs_review",
    "review_reason",
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def job_row(job: SearchJob) -> Dict[str, str]:
    row = {k: str(v) for k, v in asdict(job).items()}
    row["updated_at"] = _now()
    return row


def priced_rows(job_id: str, products: Iterable[PricedProduct]) -> List[Dict[str, str]]:
    """One row per priced variant."""
    rows = []
    for product in products:
        head = product.to_dict()
        for variant in head["variants"]:
            row = {
                "job_id": job_id,
                "product_id": head["product_id"],
                "product_name": head["name"],
                "category": head["category"],
                "rating": head["rating"],
                "rating_estimated": head["rating_estimated"],
                "carrier": variant["carrier"],
            }
            row.update({k: variant[k] for k in PRICED_HEADERS if k in variant})
            rows.append({k: str(row.get(k, "")) for k in PRICED_HEADERS})
    return rows


class GoogleSheetsClient:
    """Google Sheets sink using gspread."""

    def __init__(self, service_account_file: str, spreadsheet_url: str) -> None:
        # Extract spreadsheet ID from URL
        if "/d/" in spreadsheet_url:
            self.spreadsheet_id = spreadsheet_url.split("/d/")[1].split("/")[0]
        else:
            self.spreadsheet_id = spreadsheet_url

        scopes = [
            "https://www.googleapis.com/auth/spreadsheets",
            "https://www.googleapis.com/auth/drive",
        ]
        creds = Credentials.from_service_account_file(service_account_file, scopes=scopes)
        self.client = gspread.authorize(creds)
        self.spreadsheet = self.client.open_by_key(self.spreadsheet_id)
        self.jobs_name = "Jobs"
        self.priced_name = "Priced"

    def _get_or_create_worksheet(self, name: str, headers: List[str]) -> gspread.Worksheet:
        """Get worksheet by name, create it with a header row if missing."""
        try:
            worksheet = self.spreadsheet.worksheet(name)
        except gspread.WorksheetNotFound:
            worksheet = self.spreadsheet.add_worksheet(title=name, rows=1000, cols=len(headers))
        if not worksheet.row_values(1):
            worksheet.append_row(headers)
        return worksheet

    def write_job(self, job: SearchJob) -> None:
        """Update the job's row in place, appending it on first write."""
        worksheet = self._get_or_create_worksheet(self.jobs_name, JOB_HEADERS)
        row = job_row(job)
        values = [row.get(h, "") for h in JOB_HEADERS]
        cell = worksheet.find(job.job_id, in_column=1)
        if cell is None:
            worksheet.append_row(values)
        else:
            worksheet.update(values=[values], range_name=f"A{cell.row}")

    def append_priced(self, job_id: str, products: Iterable[PricedProduct]) -> int:
        worksheet = self._get_or_create_worksheet(self.priced_name, PRICED_HEADERS)
        rows = priced_rows(job_id, products)
        if rows:
            worksheet.append_rows([[r[h] for h in PRICED_HEADERS] for r in rows])
        return len(rows)


class LocalSheetsClient:
    """Local JSON/CSV sink for development and tests."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.jobs_dir = self.base_dir / "jobs"
        self.jobs_dir.mkdir(exist_ok=True)
        self.priced_name = "Priced"

    def _ensure_file(self, filename: str, headers: List[str]) -> Path:
        path = self.base_dir / filename
        if not path.exists():
            with path.open("w", encoding="utf-8", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(headers)
        return path

    def write_job(self, job: SearchJob) -> None:
        path = self.jobs_dir / f"{job.job_id}.json"
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(job_row(job), f, indent=2)
        tmp.replace(path)

    def read_job(self, job_id: str) -> Optional[Dict[str, str]]:
        path = self.jobs_dir / f"{job_id}.json"
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def append_priced(self, job_id: str, products: Iterable[PricedProduct]) -> int:
        path = self._ensure_file(f"{self.priced_name}.csv", PRICED_HEADERS)
        rows = priced_rows(job_id, products)
        with path.open("a", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=PRICED_HEADERS)
            for row in rows:
                writer.writerow(row)
        return len(rows)


class ProgressReporter:
    """Best-effort job progress writes on a single background worker.

    Writes are ordered. A failing sink is logged and never reaches the run.
    """

    def __init__(self, sink, job_id: str) -> None:
        self.sink = sink
        self.job = SearchJob(job_id=job_id)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress") if sink else None

    def update(self, found: int, processed: int, message: str = "", status: str = "running") -> None:
        self.job.found = found
        self.job.processed = processed
        self.job.status = status
        self.job.message = message
        self._submit(SearchJob(**asdict(self.job)))

    def finish(self, message: str = "", found: Optional[int] = None, processed: Optional[int] = None) -> None:
        found = self.job.found if found is None else found
        processed = self.job.processed if processed is None else processed
        self.update(found, processed, message, status="completed")

    def fail(self, message: str) -> None:
        self.update(self.job.found, self.job.processed, message, status="failed")

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def _submit(self, snapshot: SearchJob) -> None:
        if self._executor is not None:
            self._executor.submit(self._write, snapshot)

    def _write(self, snapshot: SearchJob) -> None:
        try:
            self.sink.write_job(snapshot)
        except Exception as e:  # noqa: BLE001
            LOGGER.warning("Progress update for job %s failed: %s", snapshot.job_id, e)
