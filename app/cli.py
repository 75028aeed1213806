"""Command line front end: lint one response file or a directory of them."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from core.config import Config
from core.models import LintResult
from pipeline.orchestrator import SceneLinter, batch_stats

logger = logging.getLogger("scene_lint")

LOG_FILE_NAME = 'scene_lint.log'


def _ensure_utf8_console() -> None:
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            stream.reconfigure(encoding="utf-8", errors="replace")


def _level(name: Any, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def setup_logging(config: Config) -> None:
    """Console handler always; file handler only when ``logging.output_dir`` is set."""
    cfg = config.logging
    base_level = cfg.get('level', 'INFO')

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)
    root.addHandler(_handler(
        logging.StreamHandler(),
        _level(cfg.get('min_log_level_console', base_level), logging.INFO),
        cfg.get('console_format', '%(levelname)s: %(message)s'),
    ))

    log_dir = cfg.get('output_dir')
    if not log_dir:
        return
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    root.addHandler(_handler(
        logging.FileHandler(log_path / LOG_FILE_NAME, encoding='utf-8'),
        _level(cfg.get('min_log_level_file', 'DEBUG'), logging.DEBUG),
        cfg.get('file_format', '%(asctime)s - %(levelname)s - %(name)s - %(message)s'),
    ))


def _collect_files(directory: Path, extensions: List[str]) -> List[Path]:
    return sorted(p for p in directory.rglob('*') if p.is_file() and p.suffix.lower() in extensions)


def _output_path(path: Path, output_dir: Optional[Path]) -> Path:
    return (output_dir or path.parent / "output") / f"{path.stem}_scene.json"


def lint_directory(
    linter: SceneLinter,
    files: List[Path],
    output_dir: Optional[Path],
    show_progress: bool = True,
    diagnose: bool = False,
) -> List[Dict[str, Any]]:
    """Lint every file, writing one ``<stem>_scene.json`` per input.

    Unreadable files are logged and skipped; the batch keeps going.
    """
    if not files:
        logger.warning("No supported response files found.")
        return []

    logger.info(f"Linting {len(files)} files.")
    payloads: List[Dict[str, Any]] = []
    skipped = 0
    bar = tqdm(files, desc="Linting", unit="file", disable=not show_progress)
    for path in bar:
        started = time.time()
        try:
            payload = linter.lint_file(str(path), str(_output_path(path, output_dir)), diagnose=diagnose)
        except (OSError, UnicodeDecodeError) as exc:
            skipped += 1
            logger.warning(f"{path.name}: skipped ({exc})")
            continue
        payloads.append(payload)
        bar.set_postfix_str(f"{payload['source']} {payload['confidence']}%")
        logger.debug(f"{path.name}: {payload['source']} at {payload['confidence']}% "
                     f"in {time.time() - started:.2f}s")

    logger.info(f"Wrote {len(payloads)} scene files, skipped {skipped}.")
    return payloads


def _log_stats(payloads: List[Dict[str, Any]]) -> None:
    fields = LintResult.__dataclass_fields__
    results = [LintResult(**{k: v for k, v in p.items() if k in fields}) for p in payloads]
    logger.info("Batch statistics:\n" + json.dumps(batch_stats(results), ensure_ascii=False, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Scene Linter - recover scene JSON from model responses')
    parser.add_argument('source', help='Response file or directory of response files')
    parser.add_argument('--output-dir', '-o', help='Where to write <name>_scene.json files')
    parser.add_argument('--config', default='config/default.yaml', help='YAML config path')
    parser.add_argument('--no-fallback', action='store_true', help='Disable narrative fallback extraction')
    parser.add_argument('--diagnose', action='store_true', help='Include candidate diagnostics in output')
    parser.add_argument('--stats', action='store_true', help='Log batch statistics when done')
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    _ensure_utf8_console()
    args = build_parser().parse_args(argv)

    config = Config(args.config)
    setup_logging(config)
    linter = SceneLinter(config_path=args.config)
    if args.no_fallback:
        linter.options.allow_fallback = False

    source = Path(args.source)
    output_dir = Path(args.output_dir) if args.output_dir else None

    if source.is_dir():
        payloads = lint_directory(
            linter,
            _collect_files(source, config.supported_extensions),
            output_dir,
            show_progress=bool(config.logging.get('enable_progress_bar', True)),
            diagnose=args.diagnose,
        )
    elif output_dir is None:
        payload = linter.lint_file(str(source), diagnose=args.diagnose)
        print(json.dumps(payload, ensure_ascii=False, indent=linter.indent))
        payloads = [payload]
    else:
        payloads = [linter.lint_file(str(source), str(_output_path(source, output_dir)), diagnose=args.diagnose)]

    if args.stats:
        _log_stats(payloads)


if __name__ == '__main__':
    main()
