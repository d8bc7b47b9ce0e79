"""
Tabular I/O - read formula tables and write mixed rows.

Inputs may be CSV, TSV (or any consistently delimited text) or Excel files.
Each input is read into a header (list of column names) and rows of cell
strings. Nothing is converted: "80" stays "80", empty cells become "".

Output rows are written with the csv module, tab-delimited when the output
file ends in .tsv and comma-delimited otherwise.
"""

import csv
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = ('.xlsx', '.xlsm', '.xltx', '.xltm')
DELIMITERS = [',', '\t', ';', '|']
DELIMITER_NAMES = {',': 'comma', '\t': 'tab', ';': 'semicolon', '|': 'pipe'}
DEFAULT_ENCODING = 'utf-8-sig'


@dataclass
class TableInput:
    source: str
    header: List[str]
    rows: Iterator[List[str]]


def detect_delimiter(file_path, sample_size: int = 8192, encoding: str = DEFAULT_ENCODING) -> str:
    """
    Auto-detect the delimiter by sampling the first lines of the file.

    A delimiter wins if every sampled line contains it the same number of
    times; among those the most frequent one is chosen. Falls back to the file
    extension (.tsv means tab) and then to comma.
    """
    with open(file_path, 'r', encoding=encoding, errors='replace') as f:
        sample = f.read(sample_size)

    lines = [line for line in sample.splitlines() if line.strip()]
    if len(sample) == sample_size and len(lines) > 1:
        lines = lines[:-1]  # last line may be cut off
    lines = lines[:10]

    best_delimiter = None
    best_score = 0
    for delim in DELIMITERS:
        counts = [line.count(delim) for line in lines]
        if counts and counts[0] > 0 and len(set(counts)) == 1 and counts[0] > best_score:
            best_score = counts[0]
            best_delimiter = delim

    if best_delimiter is None:
        best_delimiter = '\t' if Path(file_path).suffix.lower() == '.tsv' else ','
    return best_delimiter


def output_delimiter(output_path) -> str:
    """Delimiter for an output file, chosen by its extension."""
    if output_path is not None and Path(output_path).suffix.lower() == '.tsv':
        return '\t'
    return ','


def _table_from_frame(source: str, df: pd.DataFrame) -> TableInput:
    df = df.fillna('')
    header = [str(column).strip() for column in df.columns]
    rows = ([str(value) for value in row] for row in df.itertuples(index=False, name=None))
    return TableInput(source, header, rows)


@contextmanager
def open_table(file_path, delimiter: Optional[str] = None, encoding: Optional[str] = None):
    """
    Open a formula table and yield it as a TableInput.

    The file handle stays open until the with-block exits. An empty file gives
    an empty header. I/O and decoding errors are not caught.

    Args:
        file_path: Path to a CSV, TSV or Excel file
        delimiter: Column delimiter for text files (auto-detected if None)
        encoding: Text encoding (utf-8, with or without BOM, if None)
    """
    path = Path(file_path)
    source = str(file_path)

    if path.suffix.lower() in EXCEL_SUFFIXES:
        with open(path, 'rb') as handle:
            logger.debug(f"Reading {source} as Excel file")
            df = pd.read_excel(handle, sheet_name=0, dtype=str)
            yield _table_from_frame(source, df)
        return

    encoding = encoding or DEFAULT_ENCODING
    delimiter = delimiter or detect_delimiter(path, encoding=encoding)
    logger.debug(f"Reading {source} (delimiter: {DELIMITER_NAMES.get(delimiter, repr(delimiter))}, encoding: {encoding})")

    with open(path, 'r', newline='', encoding=encoding) as handle:
        try:
            width = len(pd.read_csv(handle, sep=delimiter, nrows=0).columns)
            handle.seek(0)
            # Cells beyond the header are dropped
            df = pd.read_csv(
                handle,
                sep=delimiter,
                dtype=str,
                keep_default_na=False,
                index_col=False,
                usecols=range(width),
                skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            df = pd.DataFrame()
        yield _table_from_frame(source, df)


class RowWriter:
    """Writes a header and data rows to an open text handle."""

    def __init__(self, handle, delimiter: str = ','):
        self.writer = csv.writer(handle, delimiter=delimiter, lineterminator='\n')
        self.rows_written = 0

    def write_header(self, fields: List[str]) -> None:
        self.writer.writerow(fields)

    def write_row(self, row: List[str]) -> None:
        self.writer.writerow(row)
        self.rows_written += 1
