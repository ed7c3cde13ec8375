"""
Command line entry point.

    receipt-ocr extract --input-dir data/receipt --output-dir data/outputs \
        --prompt-file prompts/journal.txt
    receipt-ocr evaluate --outputs-dir data/outputs --ground-truth-dir data/evaluate \
        --report comparison_results.csv --headers ja

Settings are read from the environment and ``.env``; command line flags
override the batch settings. Both commands print a JSON summary.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from pydantic import ValidationError

from receipt_ocr.clients.llm_client import OpenAIVisionInvoker, build_async_client
from receipt_ocr.core.exceptions import InvalidConfiguration
from receipt_ocr.core.logging_config import configure_structured_logging
from receipt_ocr.core.settings import (
    BatchSettings,
    get_app_settings,
    get_batch_settings,
    get_llm_settings,
    validate_batch_settings,
)
from receipt_ocr.pipeline.controller import PipelineController
from receipt_ocr.pipeline.inputs import discover_work_items, numbered_work_items
from receipt_ocr.pipeline.models import RunResult
from receipt_ocr.processors.evaluator import ReceiptComparator, write_csv
from receipt_ocr.processors.receipt_transformer import ReceiptTransformer
from receipt_ocr.resilience.retry import RetryConfig
from receipt_ocr.storage.sink import JsonFileSink

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID_CONFIGURATION = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="receipt-ocr",
        description="Batch receipt extraction with a vision LLM, and accuracy evaluation",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Extract receipt fields from documents")
    extract.add_argument("--input-dir", required=True, type=Path)
    extract.add_argument("--output-dir", required=True, type=Path)
    extract.add_argument(
        "--prompt-file", required=True, type=Path, help="Extraction prompt (UTF-8 text)"
    )
    extract.add_argument("--batch-size", type=int, default=None)
    extract.add_argument("--max-parallelism", type=int, default=None)
    extract.add_argument(
        "--rate-limit-window-ms",
        type=int,
        default=None,
        help="Minimum spacing between batch starts",
    )
    extract.add_argument("--max-items", type=int, default=None)
    extract.add_argument(
        "--discover",
        action="store_true",
        help="List the input directory instead of expecting 1.pdf .. N.pdf",
    )

    evaluate = sub.add_parser("evaluate", help="Compare extracted records with ground truth")
    evaluate.add_argument("--outputs-dir", required=True, type=Path)
    evaluate.add_argument("--ground-truth-dir", required=True, type=Path)
    evaluate.add_argument("--report", required=True, type=Path, help="CSV output path")
    evaluate.add_argument("--headers", choices=("en", "ja"), default="en")
    return parser


def _batch_settings(args: argparse.Namespace) -> BatchSettings:
    overrides = {
        "BATCH_SIZE": args.batch_size,
        "MAX_PARALLELISM": args.max_parallelism,
        "RATE_LIMIT_WINDOW_MS": args.rate_limit_window_ms,
        "MAX_ITEMS": args.max_items,
    }
    settings = get_batch_settings().model_copy(
        update={key: value for key, value in overrides.items() if value is not None}
    )
    validate_batch_settings(settings)
    return settings


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform; Ctrl+C cancels the task instead.
        pass


def _read_prompt(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidConfiguration(
            f"Cannot read prompt file {path}: {e}", field="prompt_file"
        ) from e


async def run_extract(args: argparse.Namespace) -> RunResult:
    batch = _batch_settings(args)
    llm = get_llm_settings()
    prompt = _read_prompt(args.prompt_file)

    if args.discover:
        items = discover_work_items(args.input_dir, batch.MAX_ITEMS)
    else:
        items = numbered_work_items(args.input_dir, batch.MAX_ITEMS)

    retry_config = None
    if batch.RETRY_MAX_ATTEMPTS > 1:
        retry_config = RetryConfig(max_attempts=batch.RETRY_MAX_ATTEMPTS)

    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)

    async with build_async_client(llm) as client:
        controller = PipelineController(
            OpenAIVisionInvoker.from_settings(client, llm, prompt),
            ReceiptTransformer(),
            JsonFileSink(args.output_dir),
            retry_config=retry_config,
            item_timeout_seconds=batch.ITEM_TIMEOUT_SECONDS,
        )
        return await controller.run(
            items,
            batch_size=batch.BATCH_SIZE,
            max_parallelism=batch.MAX_PARALLELISM,
            rate_limit_window_ms=batch.RATE_LIMIT_WINDOW_MS,
            cancel_event=cancel_event,
        )


def run_evaluate(args: argparse.Namespace) -> dict:
    comparator = ReceiptComparator(args.outputs_dir, args.ground_truth_dir)
    report = comparator.compare()
    write_csv(args.report, report.rows, headers=args.headers)
    return {**report.summary(), "report": str(args.report)}


def _settings_error(exc: ValidationError) -> InvalidConfiguration:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or exc.title
    return InvalidConfiguration(
        f"Invalid setting {field}: {first['msg']}",
        field=field,
        details={"settings": exc.title, "error_count": exc.error_count()},
    )


def _report_configuration_error(e: InvalidConfiguration) -> int:
    logger.error(f"Invalid configuration: {e.message}", extra={"error_code": e.error_code})
    print(json.dumps({"error": e.to_dict()}, ensure_ascii=False, indent=2))
    return EXIT_INVALID_CONFIGURATION


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        app = get_app_settings()
    except ValidationError as e:
        return _report_configuration_error(_settings_error(e))
    configure_structured_logging(level=app.LOG_LEVEL, json_format=app.LOG_JSON)

    try:
        if args.command == "extract":
            summary = asyncio.run(run_extract(args)).summary()
        else:
            summary = run_evaluate(args)
    except ValidationError as e:
        return _report_configuration_error(_settings_error(e))
    except InvalidConfiguration as e:
        return _report_configuration_error(e)

    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
