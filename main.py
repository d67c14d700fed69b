"""Main entry point for Gridlens"""

import argparse
import logging
import sys
from pathlib import Path

from config import settings
from context import MultiModalSpreadsheetContext
from core.enums import GridFormat
from core.exceptions import GridlensError
from core.models import TokenOptimizationOptions
from encoders import GridSerializer
from utils.logging import configure_logging
from utils.workbook import load_grid

logger = logging.getLogger(__name__)

CLI_FORMATS = [
    GridFormat.MARKDOWN.value,
    GridFormat.SPARSE.value,
    GridFormat.COMPRESSED.value,
    GridFormat.HYBRID.value,
]


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Gridlens - token-bounded spreadsheet context for language models",
    )
    parser.add_argument("file", type=Path, help="Input .xlsx file path")
    parser.add_argument("--sheet", type=str, default=None, help="Worksheet name (default: active sheet)")
    parser.add_argument("--range", dest="cell_range", type=str, default=None, help="Cell range, e.g. A1:F20")
    parser.add_argument("--query", type=str, default=None, help="Question the context should serve")
    parser.add_argument("--format", choices=CLI_FORMATS, default=None, help="Print a single encoding instead")
    parser.add_argument("--max-tokens", type=int, default=None, help="Token budget override")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    args = parser.parse_args(argv)
    configure_logging(settings.LOG_LEVEL)

    if not args.file.exists():
        print(f"Error: File not found: {args.file}")
        return 1

    try:
        grid = load_grid(str(args.file), args.sheet, args.cell_range)

        if args.format:
            options = TokenOptimizationOptions(max_tokens=args.max_tokens or settings.DEFAULT_MAX_TOKENS)
            encoded = GridSerializer().to_llm_format(grid, GridFormat(args.format), options)
            print(encoded.model_dump_json(indent=2) if args.json else encoded.content)
            return 0

        options = TokenOptimizationOptions(max_tokens=args.max_tokens) if args.max_tokens else None
        result = MultiModalSpreadsheetContext().build_comprehensive_context(grid, args.query, options)
        if args.json:
            print(result.model_dump_json(indent=2))
        else:
            for mode, content in result.modes.items():
                print(f"===== {mode.value} =====")
                print(content)
                print()
            print(
                f"Tokens: {result.total_tokens}  Coverage: {result.coverage_score:.2f}"
                f"  Fidelity: {result.fidelity_score:.2f}"
            )
        return 0

    except GridlensError as e:
        print(f"\n✗ {e}")
        return 1
    except Exception as e:
        logger.exception("Unexpected failure")
        print(f"\n✗ Failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
