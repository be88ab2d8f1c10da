"""ExactSize command line interface.

Usage:
    exactsize photo.jpg --target 500KB
    exactsize *.png --target 1.5MB --output-dir out --workers 4

Each image is compressed to the largest size that fits the target and
written as <name>_exact.<ext>.
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.progress import Progress, BarColumn, TextColumn
from rich.table import Column, Table

from .compression import get_encoder_capabilities
from .logger import get_logger, setup_file_logging, close_logging
from .processor import ImageProcessor, ImageStatus, ImageTask
from .settings import AppSettings, load_settings, save_settings, SETTINGS_FILE
from .utils import format_bytes, get_recommendation, is_supported_format, parse_target_size

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="exactsize",
        description="Compress images to an exact target file size.",
        epilog="Examples:\n"
               "  exactsize photo.jpg --target 500KB\n"
               "  exactsize a.png b.webp --target 1.5MB -o out\n",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "files",
        nargs="*",
        help="Images to compress",
    )
    parser.add_argument(
        "-t", "--target",
        help="Target size, e.g. 500KB or 1.5MB (default: from settings)",
    )
    parser.add_argument(
        "-o", "--output-dir",
        type=Path,
        help="Where to write results (default: next to each input)",
    )
    parser.add_argument(
        "-w", "--workers",
        type=int,
        help="Images compressed concurrently",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        help="Binary search steps per phase",
    )
    parser.add_argument(
        "--phase2-quality",
        type=float,
        help="Fixed quality (0-1) used while scaling lossy images",
    )
    parser.add_argument(
        "--ssim",
        action="store_true",
        help="Report SSIM of each result (needs scikit-image)",
    )
    parser.add_argument(
        "--mozjpeg",
        action="store_true",
        help="Apply MozJPEG lossless optimization to JPEG output",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite existing output files",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=SETTINGS_FILE,
        help="Settings file to read defaults from",
    )
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Store the effective options as new defaults",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write a debug log to this file",
    )
    parser.add_argument(
        "--capabilities",
        action="store_true",
        help="Show available formats and optional features, then exit",
    )
    return parser


def apply_arguments(settings: AppSettings, args: argparse.Namespace) -> AppSettings:
    """Overlay command line options on stored settings.

    Raises:
        ValueError: If an option is out of range
    """
    search_changes = {}
    if args.iterations is not None:
        search_changes['iterations'] = args.iterations
    if args.phase2_quality is not None:
        search_changes['phase2_quality'] = args.phase2_quality
    if args.ssim:
        search_changes['calculate_ssim'] = True

    changes = {}
    if search_changes:
        changes['search'] = replace(settings.search, **search_changes)
    if args.mozjpeg:
        changes['encoder'] = replace(settings.encoder, use_mozjpeg=True)
    if args.workers is not None:
        changes['max_workers'] = args.workers
    if args.target:
        changes['target_size'] = parse_target_size(args.target)
        changes['target_unit'] = 'B'

    return replace(settings, **changes) if changes else settings


def _print_capabilities(console: Console) -> None:
    capabilities = get_encoder_capabilities()
    table = Table(title="Capabilities")
    table.add_column("Feature")
    table.add_column("Available")
    table.add_row("Formats", ", ".join(capabilities['formats']))
    table.add_row("SSIM", str(capabilities['ssim_validation']))
    table.add_row("MozJPEG", str(capabilities['mozjpeg_optimization']))
    table.add_row("AVIF", str(capabilities['avif_encoding']))
    console.print(table)


def _summary_table(tasks: List[ImageTask], show_ssim: bool) -> Table:
    table = Table(title="Results")
    table.add_column("File")
    table.add_column("Original", justify="right")
    table.add_column("Final", justify="right")
    table.add_column("Saved", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("Scale", justify="right")
    if show_ssim:
        table.add_column("SSIM", justify="right")
    table.add_column("Details")

    for task in tasks:
        result = task.result
        if result is None:
            row = [task.filepath.name, format_bytes(task.original_size), "-", "-", "-", "-"]
            if show_ssim:
                row.append("-")
            row.append(f"[red]{task.status.value}[/red] {task.error or ''}")
            table.add_row(*row)
            continue

        final = format_bytes(result.final_size_bytes)
        if not result.success:
            final = f"[yellow]{final}[/yellow]"
        row = [
            task.filepath.name,
            format_bytes(result.original_size_bytes),
            final,
            f"{result.reduction_percentage:.1f}%",
            f"{result.quality}%",
            f"{result.scale:.2f}",
        ]
        if show_ssim:
            row.append("-" if result.ssim_score is None else f"{result.ssim_score:.3f}")
        row.append(result.explanation)
        table.add_row(*row)
    return table


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = Console(stderr=True)

    if args.log_file:
        setup_file_logging(args.log_file)

    try:
        if args.capabilities:
            _print_capabilities(console)
            return 0

        if not args.files:
            parser.error("no input files given")

        try:
            settings = apply_arguments(load_settings(args.settings), args)
        except ValueError as e:
            console.print(f"[red]Invalid option:[/red] {e}")
            return 2

        if args.save_settings:
            save_settings(settings, args.settings)

        processor = ImageProcessor(settings)
        for name in args.files:
            path = Path(name)
            if not path.is_file():
                console.print(f"[red]Not a file:[/red] {path}")
                return 2
            if not is_supported_format(path):
                console.print(f"[yellow]Unrecognized extension, trying anyway:[/yellow] {path.name}")
            processor.add_file(path)

        tasks = list(processor.queue)
        logger.info("Compressing %d image(s) to %d bytes", len(tasks), settings.target_bytes)
        console.print(
            f"Target {format_bytes(settings.target_bytes)} for {len(tasks)} image(s). "
            f"{get_recommendation(t.original_size for t in tasks)}."
        )

        text_column = TextColumn("{task.description}", table_column=Column(ratio=1))
        bar_column = BarColumn(bar_width=None, table_column=Column(ratio=3))
        with Progress(
            text_column,
            bar_column,
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
            expand=True,
        ) as progress:
            bars = {
                id(task): progress.add_task(task.filepath.name, total=100)
                for task in tasks
            }

            def on_progress(task: ImageTask, percent: float) -> None:
                progress.update(bars[id(task)], completed=percent)

            processor.process_batch(
                args.output_dir,
                on_progress,
                overwrite=args.overwrite,
                save_beside_input=args.output_dir is None,
            )

        console.print(_summary_table(tasks, settings.search.calculate_ssim))
        for task in tasks:
            if task.output_path is not None:
                console.print(f"Saved {task.output_path}")

        failed = [t for t in tasks if t.status is ImageStatus.FAILED]
        return 1 if failed else 0
    finally:
        close_logging()


if __name__ == "__main__":
    sys.exit(main())
