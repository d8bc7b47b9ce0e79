"""
Formula mixer - combine several formulas (recipes) into one.

A formula is a table of at least two columns: the first holds the ingredient
name, the second its weight. Weights may be plain numbers ("0.3") or percents
("60%" or "60 %", read as 0.6).

Mixing works in three steps:
1. The column lists of all inputs are unioned, in order of first appearance.
2. Every data row of every input is attributed to its ingredient. Weights are
   collected per ingredient, the other ("extra") columns keep the value from
   the last input that supplied one.
3. The weight of each ingredient is the sum of its weights divided by the
   number of input files (an input without the ingredient counts as zero).
   Rows are sorted by decreasing weight, then by case-insensitive name.

All inputs are read into memory before anything is emitted, since the column
union and the per-file average are only known after the last input is read.
"""

import logging
import re
from contextlib import ExitStack
from dataclasses import dataclass, field
from decimal import Context, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import tabular_io

logger = logging.getLogger(__name__)

PLAIN = 'plain'
PERCENT_SIGN = 'percent_sign'
PERCENT_NOSIGN = 'percent_nosign'
WEIGHT_MODES = (PLAIN, PERCENT_SIGN, PERCENT_NOSIGN)

# Output numbers are rounded to 15 significant digits when no template is given
DISPLAY_CONTEXT = Context(prec=15)

PERCENT_RE = re.compile(r'^\s*(.+?)\s*%\s*$')
NUMBER_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)


class MixFormulasError(ValueError):
    """Base class for errors raised while mixing formulas."""


class SchemaError(MixFormulasError):
    """An input has fewer than two columns."""


class ParseError(MixFormulasError):
    """A weight cell is not a number (with or without a percent sign)."""


class ConfigError(MixFormulasError):
    """The output options contradict each other or are malformed."""


def weight_mode(output_percent: bool = False, output_percent_nosign: bool = False) -> str:
    """Map the two percent flags to a weight formatting mode."""
    if output_percent and output_percent_nosign:
        raise ConfigError("output_percent and output_percent_nosign cannot both be set")
    if output_percent:
        return PERCENT_SIGN
    if output_percent_nosign:
        return PERCENT_NOSIGN
    return PLAIN


@dataclass
class MixOptions:
    output_format: Optional[str] = None
    output_percent: bool = False
    output_percent_nosign: bool = False

    @property
    def mode(self) -> str:
        return weight_mode(self.output_percent, self.output_percent_nosign)

    def validate(self) -> None:
        """Raise ConfigError if these options cannot be used for a run."""
        weight_mode(self.output_percent, self.output_percent_nosign)
        if self.output_format:
            try:
                self.output_format % 0.0
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid output format {self.output_format!r}: {e}")


@dataclass
class IngredientRecord:
    name: str
    weight_samples: List[Decimal] = field(default_factory=list)
    extra_values: Dict[str, str] = field(default_factory=dict)


@dataclass
class MixResult:
    output_fields: List[str]
    file_count: int
    ingredient_count: int
    row_count: int


def unify_schemas(schemas: Iterable[Sequence[str]]) -> Tuple[List[str], Dict[str, int]]:
    """
    Union several column lists, keeping the order of first appearance.

    Args:
        schemas: Column lists, in input order

    Returns:
        The unified column list and a mapping of column name to its index
    """
    output_fields: List[str] = []
    output_fields_idx: Dict[str, int] = {}
    for schema in schemas:
        for name in schema:
            if name not in output_fields_idx:
                output_fields_idx[name] = len(output_fields)
                output_fields.append(name)
    return output_fields, output_fields_idx


def parse_weight(raw: str) -> Decimal:
    """
    Convert a weight cell to a decimal fraction.

    "60%" and "60 %" become Decimal("0.6"); anything without a percent sign is
    read as-is, so "0.3" becomes Decimal("0.3").
    """
    text = raw if raw is not None else ''
    divisor = 1
    match = PERCENT_RE.match(text)
    if match:
        text = match.group(1)
        divisor = 100
    text = text.strip()
    if not NUMBER_RE.fullmatch(text):
        raise ParseError(f"Invalid weight {raw!r}: not a number")
    return Decimal(text) / divisor


def _format_number(value: Decimal) -> str:
    value = DISPLAY_CONTEXT.plus(value).normalize(DISPLAY_CONTEXT)
    return format(value, 'f')


def format_weight(value, mode: str = PLAIN, output_format: Optional[str] = None) -> str:
    """
    Render a mixed weight for output.

    percent_sign multiplies by 100 and appends "%" (the template is not used),
    percent_nosign multiplies by 100, plain leaves the value alone. The
    printf-style template, if any, is then applied to the number.
    """
    if mode not in WEIGHT_MODES:
        raise ConfigError(f"Unknown weight mode {mode!r}, expected one of {', '.join(WEIGHT_MODES)}")
    value = Decimal(str(value)) if not isinstance(value, Decimal) else value

    if mode == PERCENT_SIGN:
        return _format_number(value * 100) + '%'
    if mode == PERCENT_NOSIGN:
        value = value * 100
    if output_format:
        return output_format % float(value)
    return _format_number(value)


class IngredientAggregator:
    """Collects weights and extra column values per ingredient for one mix."""

    def __init__(self):
        self.records: Dict[str, IngredientRecord] = {}

    def __len__(self):
        return len(self.records)

    def observe(self, ingredient: str, weight_raw: str, extras: Optional[Dict[str, str]] = None) -> IngredientRecord:
        weight = parse_weight(weight_raw)
        record = self.records.get(ingredient)
        if record is None:
            record = self.records[ingredient] = IngredientRecord(ingredient)
        record.weight_samples.append(weight)
        # Later inputs override earlier ones
        for column, value in (extras or {}).items():
            record.extra_values[column] = value
        return record

    def final_weights(self, file_count: int) -> Dict[str, Decimal]:
        """Average each ingredient's weights over all input files, not just the ones containing it."""
        if not file_count:
            return {}
        return {
            name: sum(record.weight_samples, Decimal(0)) / file_count
            for name, record in self.records.items()
        }


def emit_rows(aggregator: IngredientAggregator, output_fields: Sequence[str], file_count: int,
              print_row: Callable[[List[str]], None], options: Optional[MixOptions] = None) -> int:
    """
    Compute the mixed weights and hand one row per ingredient to print_row.

    The ingredient and weight columns are the first two of output_fields.

    Returns:
        Number of rows emitted
    """
    options = options or MixOptions()
    mode = options.mode
    weights = aggregator.final_weights(file_count)
    if not weights:
        return 0

    ingredient_field, weight_field = output_fields[0], output_fields[1]
    ordered = sorted(weights.items(), key=lambda item: (-item[1], item[0].lower()))

    count = 0
    for name, weight in ordered:
        extra_values = aggregator.records[name].extra_values
        row = []
        for column in output_fields:
            if column == ingredient_field:
                row.append(name)
            elif column == weight_field:
                row.append(format_weight(weight, mode, options.output_format))
            else:
                row.append(extra_values.get(column, ''))
        print_row(row)
        count += 1

    logger.debug(f"Emitted {count} rows")
    return count


def _read_inputs(sources, open_input):
    """Open every input, check its header and buffer its rows. Returns (header, source, rows) per input."""
    batches = []
    with ExitStack() as stack:
        tables = []
        for source in sources:
            table = stack.enter_context(open_input(source))
            if len(table.header) < 2:
                raise SchemaError(
                    f"{table.source}: at least 2 columns are required "
                    f"(ingredient and weight), found {len(table.header)}"
                )
            tables.append(table)

        # Handles stay open until every input has been read
        for table in tables:
            rows = [list(row) for row in table.rows]
            logger.info(f"Read {len(rows)} rows from {table.source}")
            batches.append((list(table.header), table.source, rows))
    return batches


def mix_formulas(sources: Sequence, print_row: Callable[[List[str]], None],
                 options: Optional[MixOptions] = None,
                 print_header: Optional[Callable[[List[str]], None]] = None,
                 open_input=None) -> MixResult:
    """
    Mix several formula tables into one and emit the result.

    Args:
        sources: Inputs to open, in order (file paths for the default opener)
        print_row: Called once per output row, in sorted order
        options: Output formatting options
        print_header: Called once with the unified column list before any row
        open_input: Context manager factory yielding a TableInput per source

    Returns:
        MixResult describing what was written

    Raises:
        ConfigError: If the options are inconsistent (checked before opening inputs)
        SchemaError: If an input has fewer than two columns
        ParseError: If a weight cell is not a number
    """
    options = options or MixOptions()
    options.validate()
    open_input = open_input or tabular_io.open_table

    batches = _read_inputs(sources, open_input)
    file_count = len(batches)
    if not file_count:
        logger.warning("No input files given, nothing to mix")
        return MixResult([], 0, 0, 0)

    # Every input's first two columns play the roles named by the first input
    ingredient_field, weight_field = batches[0][0][0], batches[0][0][1]
    schemas = [[ingredient_field, weight_field] + header[2:] for header, _, _ in batches]
    output_fields, _ = unify_schemas(schemas)
    logger.info(f"Mixing {file_count} formulas into {len(output_fields)} columns")

    aggregator = IngredientAggregator()
    for header, source, rows in batches:
        for row_number, row in enumerate(rows, start=1):
            cells = row + [''] * (len(header) - len(row))
            extras = {
                header[j]: cells[j] for j in range(2, len(header))
                if header[j] not in (ingredient_field, weight_field)
            }
            try:
                aggregator.observe(cells[0], cells[1], extras)
            except ParseError as e:
                raise ParseError(f"{source}, data row {row_number}: {e}") from e

    if print_header is not None:
        print_header(output_fields)
    row_count = emit_rows(aggregator, output_fields, file_count, print_row, options)
    return MixResult(output_fields, file_count, len(aggregator), row_count)
