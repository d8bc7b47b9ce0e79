#!/usr/bin/env python3
"""
CSV Formula Mixer - mix several formulas/recipes into one combined formula.

Each formula is a CSV/TSV/XLSX file with at least two columns. The first column
holds the ingredient name, the second its weight. Percent weights are
recognised and converted to decimals ("60%" or "60.0 %" become 0.6).

The weight of each ingredient in the mix is the sum of its weights divided by
the number of formulas, so an ingredient missing from a formula counts as 0.
Rows are sorted by decreasing weight, then by ingredient name
(case-insensitive). Other columns are collected from all files; when several
files give a value for the same ingredient, the last file wins.

Example, mixing:

    ingredient,%weight
    water,80
    sugar,15
    citric acid,0.3
    strawberry syrup,4.7

and:

    Ingredient,% of Weight
    lemon syrup,5.75
    citric acid,0.25
    sugar,14
    water,80

gives:

    ingredient,%weight
    water,80
    sugar,14.5
    lemon syrup,2.875
    strawberry syrup,2.35
    citric acid,0.275

Usage:
python csv_mix_formulas.py formula1.csv formula2.csv -o mixed.csv
"""

import argparse
import functools
import logging
import sys
from pathlib import Path

from mix_formulas import MixOptions, mix_formulas
from tabular_io import RowWriter, open_table, output_delimiter

LOGGER_NAME = 'csv_mix_formulas'


def setup_logging(log_file=None, verbose=False) -> logging.Logger:
    """Set up logging to the console and, optionally, a file."""
    handlers = []

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    handlers.append(console_handler)

    # File handler
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)
    return logging.getLogger(LOGGER_NAME)


def parse_delimiter(value):
    """argparse type for --delimiter, accepting a literal tab as '\\t' or 'tab'."""
    if value in ('\\t', 'tab'):
        return '\t'
    if len(value) != 1:
        raise argparse.ArgumentTypeError(f"delimiter must be a single character, got '{value}'")
    return value


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Mix several formulas/recipes (lists of ingredients and their weights) into one, '
                    'and output the combined formula',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  python csv_mix_formulas.py lemonade1.csv lemonade2.csv
  python csv_mix_formulas.py recipes/*.csv --output-percent -o mixed.csv
  python csv_mix_formulas.py a.tsv b.xlsx --output-format "%.2f" -o mixed.tsv
        '''
    )

    parser.add_argument('inputs', nargs='+', type=Path, help='Formula files to mix (CSV, TSV or XLSX)')
    parser.add_argument('-o', '--output', type=Path,
                        help='Output file (default: standard output). A .tsv extension writes tab-separated output')
    parser.add_argument('--overwrite', action='store_true', help='Replace the output file if it already exists')
    parser.add_argument('--delimiter', type=parse_delimiter,
                        help='Input column delimiter (default: auto-detect). Use "\\t" or "tab" for tabs')
    parser.add_argument('--encoding', help='Input text encoding (default: utf-8, with or without BOM)')

    formatting = parser.add_argument_group('formatting')
    formatting.add_argument('--output-format', help='A printf-style template to format the weight, e.g. "%%.3f"')
    percent = formatting.add_mutually_exclusive_group()
    percent.add_argument('--output-percent', action='store_true',
                         help='Convert output weights to percent with the percent sign (e.g. 0.6 to "60%%")')
    percent.add_argument('--output-percent-nosign', action='store_true',
                         help='Convert output weights to percent without the percent sign (e.g. 0.6 to "60")')

    parser.add_argument('--log-file', type=Path, help='Also write a detailed log to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Report progress on stderr')

    return parser.parse_args(argv)


def write_output(output_path, output_fields, rows):
    """Write the header and rows to output_path, or to stdout if it is None."""
    if output_path is None:
        writer = RowWriter(sys.stdout, output_delimiter(None))
        writer.write_header(output_fields)
        for row in rows:
            writer.write_row(row)
        return writer.rows_written

    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = RowWriter(f, output_delimiter(output_path))
        writer.write_header(output_fields)
        for row in rows:
            writer.write_row(row)
    return writer.rows_written


def main(argv=None):
    args = parse_args(argv)
    logger = setup_logging(args.log_file, args.verbose)

    options = MixOptions(
        output_format=args.output_format,
        output_percent=args.output_percent,
        output_percent_nosign=args.output_percent_nosign,
    )
    open_input = functools.partial(open_table, delimiter=args.delimiter, encoding=args.encoding)

    try:
        if args.output is not None and args.output.exists() and not args.overwrite:
            raise FileExistsError(f"Output file already exists: {args.output} (use --overwrite to replace it)")

        logger.info(f"Mixing {len(args.inputs)} formulas")
        # Rows are held back until the whole mix has succeeded, so a failed run writes nothing
        rows = []
        result = mix_formulas(args.inputs, rows.append, options, open_input=open_input)
        written = write_output(args.output, result.output_fields, rows)
    except (OSError, ValueError, LookupError) as e:
        logger.debug('Mix failed', exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info(f"Wrote {written} ingredients from {result.file_count} formulas"
                + (f" to {args.output}" if args.output else ''))
    return 0


if __name__ == '__main__':
    main()
