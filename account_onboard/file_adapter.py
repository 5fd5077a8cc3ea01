"""
File system adapter - isolates CSV input and the good/bad output sinks.
"""

from typing import List, Dict, Optional
from pathlib import Path
import csv
from dataclasses import dataclass

from .exceptions import CSVError

ERROR_COLUMN = "ErrorMessage"


@dataclass
class CSVData:
    """Data structure for CSV file contents."""
    headers: List[str]
    rows: List[Dict[str, str]]


class FileAdapter:
    """Adapter for file system operations."""

    def read_csv(self, file_path: Path) -> CSVData:
        """Read a CSV file. Raises CSVError when it is missing, empty or malformed."""
        if not file_path.exists():
            raise CSVError(f"CSV file not found: {file_path}", file_path=str(file_path))
        try:
            # utf-8-sig drops the BOM spreadsheet exports put in front of the header
            with open(file_path, 'r', newline='', encoding='utf-8-sig') as f:
                reader = csv.DictReader(f)
                headers = [h.strip() for h in (reader.fieldnames or [])]
                rows = [{(k.strip() if k else k): v for k, v in raw.items()} for raw in reader]
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise CSVError(f"Failed to read CSV file: {e}", file_path=str(file_path)) from e

        if not headers:
            raise CSVError("CSV file is empty or missing headers", file_path=str(file_path), line_number=1)
        return CSVData(headers=headers, rows=rows)

    def write_csv(self, file_path: Path, data: CSVData) -> None:
        """Write CSV data to file, replacing any previous content."""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=data.headers, extrasaction='ignore')
            writer.writeheader()
            writer.writerows(data.rows)


class CsvSink:
    """Append-only CSV output. The header is written with the first row."""

    def __init__(self, file_path: Path, headers: List[str]):
        self.file_path = file_path
        self.headers = list(headers)
        self.rows_written = 0

    def append(self, row: Dict[str, Optional[str]]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        new_file = not self.file_path.exists() or self.file_path.stat().st_size == 0
        with open(self.file_path, 'a', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=self.headers, extrasaction='ignore', restval='')
            if new_file:
                writer.writeheader()
            writer.writerow({k: v for k, v in row.items() if k is not None})
        self.rows_written += 1


def create_sinks(input_path: Path, output_dir: Path, headers: List[str]) -> Dict[str, CsvSink]:
    """Good and bad sinks named after the input file; the bad one adds ErrorMessage."""
    stem = input_path.stem
    good_headers = [h for h in headers if h.lower() != ERROR_COLUMN.lower()]
    return {
        'good': CsvSink(output_dir / f"{stem}.good.csv", good_headers),
        'bad': CsvSink(output_dir / f"{stem}.bad.csv", good_headers + [ERROR_COLUMN]),
    }
