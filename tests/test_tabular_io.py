import io

import pytest
from openpyxl import Workbook

from tabular_io import RowWriter, detect_delimiter, open_table, output_delimiter


def write(path, text, encoding="utf-8"):
    path.write_text(text, encoding=encoding)
    return path


def read(path, **kwargs):
    with open_table(path, **kwargs) as table:
        return table.header, list(table.rows)


@pytest.mark.parametrize("text, expected", [
    ("ingredient,weight\nwater,80\n", ","),
    ("ingredient\tweight\nwater\t80\n", "\t"),
    ("ingredient;weight;origin\nwater;80;tap\n", ";"),
    ("ingredient|weight\nwater|80\n", "|"),
])
def test_detect_delimiter(tmp_path, text, expected):
    assert detect_delimiter(write(tmp_path / "formula.txt", text)) == expected


def test_detect_delimiter_prefers_consistent_counts(tmp_path):
    # commas inside the quoted cell make the comma count inconsistent
    path = write(tmp_path / "formula.txt", 'ingredient;weight\n"salt, fine";1\nwater;99\n')
    assert detect_delimiter(path) == ";"


def test_detect_delimiter_falls_back_to_extension(tmp_path):
    assert detect_delimiter(write(tmp_path / "single.tsv", "ingredient\n")) == "\t"
    assert detect_delimiter(write(tmp_path / "single.csv", "ingredient\n")) == ","


def test_open_table_reads_strings_verbatim(tmp_path):
    path = write(tmp_path / "a.csv", "ingredient,weight,notes\nwater,80.0,\nsugar,15%,NA\n")
    header, rows = read(path)
    assert header == ["ingredient", "weight", "notes"]
    assert rows == [["water", "80.0", ""], ["sugar", "15%", "NA"]]


def test_open_table_tsv(tmp_path):
    path = write(tmp_path / "a.tsv", "ingredient\t% of weight\nlemon syrup\t5.75\n")
    header, rows = read(path)
    assert header == ["ingredient", "% of weight"]
    assert rows == [["lemon syrup", "5.75"]]


def test_open_table_explicit_delimiter(tmp_path):
    path = write(tmp_path / "a.txt", "ingredient;weight\nwater;80\n")
    header, rows = read(path, delimiter=";")
    assert header == ["ingredient", "weight"]
    assert rows == [["water", "80"]]


def test_open_table_strips_header_and_bom(tmp_path):
    path = write(tmp_path / "a.csv", "ingredient , weight\nwater,80\n", encoding="utf-8-sig")
    header, _ = read(path)
    assert header == ["ingredient", "weight"]


def test_open_table_pads_short_rows_and_skips_blank_lines(tmp_path):
    path = write(tmp_path / "a.csv", "ingredient,weight,origin\nwater,80\n\nsugar,20,FR\n")
    _, rows = read(path)
    assert rows == [["water", "80", ""], ["sugar", "20", "FR"]]


@pytest.mark.parametrize("text", [
    "ingredient,weight\nwater,80\nsugar,20,extra\n",
    "ingredient,weight\nsugar,20,extra\nwater,80\n",
])
def test_open_table_drops_cells_beyond_header(tmp_path, text):
    header, rows = read(write(tmp_path / "a.csv", text))
    assert header == ["ingredient", "weight"]
    assert sorted(rows) == [["sugar", "20"], ["water", "80"]]


def test_open_table_keeps_quoted_delimiters(tmp_path):
    path = write(tmp_path / "a.csv", 'ingredient,weight\n"salt, fine",1\nwater,99\n')
    _, rows = read(path, delimiter=",")
    assert rows == [["salt, fine", "1"], ["water", "99"]]


def test_open_table_header_only(tmp_path):
    header, rows = read(write(tmp_path / "a.csv", "ingredient,weight\n"))
    assert header == ["ingredient", "weight"]
    assert rows == []


def test_open_table_empty_file(tmp_path):
    header, rows = read(write(tmp_path / "a.csv", ""))
    assert header == []
    assert rows == []


def test_open_table_excel(tmp_path):
    wb = Workbook()
    ws = wb.active
    ws.append(["ingredient", "weight", "origin"])
    ws.append(["water", 80, "tap"])
    ws.append(["sugar", "15%", None])
    path = tmp_path / "formula.xlsx"
    wb.save(path)

    header, rows = read(path)
    assert header == ["ingredient", "weight", "origin"]
    assert rows == [["water", "80", "tap"], ["sugar", "15%", ""]]


def test_open_table_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read(tmp_path / "missing.csv")


def test_output_delimiter():
    assert output_delimiter(None) == ","
    assert output_delimiter("mixed.csv") == ","
    assert output_delimiter("mixed.TSV") == "\t"


def test_row_writer():
    handle = io.StringIO()
    writer = RowWriter(handle)
    writer.write_header(["ingredient", "%weight"])
    writer.write_row(["citric acid", "0.275"])
    writer.write_row(["salt, fine", "1"])
    assert handle.getvalue() == 'ingredient,%weight\ncitric acid,0.275\n"salt, fine",1\n'
    assert writer.rows_written == 2
