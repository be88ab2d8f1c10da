"""Batch target-size compression and queue management"""

import enum
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Callable, Dict, Any

from .compression import (
    CompressionResult,
    SourceImage,
    TargetSizeEncoder,
    decode_image,
    encoder_for_source,
    get_encoder,
)
from .errors import CompressionError, SearchCancelled
from .logger import get_logger
from .settings import AppSettings, MAX_WORKERS_CAP
from .utils import format_bytes, output_filename

logger = get_logger("processor")

# progress_callback(task, percent)
TaskProgressCallback = Callable[["ImageTask", float], None]


class ImageStatus(enum.Enum):
    """Lifecycle of one image: IDLE -> SEARCHING -> terminal state."""
    IDLE = "idle"
    SEARCHING = "searching"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ImageTask:
    """A single image to compress to a byte budget.

    An over-budget result is still COMPLETED; FAILED is reserved for
    decode and encode errors.
    """
    filepath: Path
    target_bytes: int
    status: ImageStatus = ImageStatus.IDLE
    progress: float = 0.0
    result: Optional[CompressionResult] = None
    error: Optional[str] = None
    output_path: Optional[Path] = None
    output_extension: str = ""

    def __post_init__(self):
        """Validate task parameters."""
        if not isinstance(self.filepath, Path):
            self.filepath = Path(self.filepath)

        if not self.filepath.exists():
            raise ValueError(f"Image file not found: {self.filepath}")

        if self.target_bytes <= 0:
            raise ValueError(f"target_bytes must be positive, got {self.target_bytes}")

    @property
    def original_size(self) -> int:
        return self.filepath.stat().st_size

    def reset(self) -> None:
        """Return a finished task to IDLE so it can be run again."""
        if self.status is ImageStatus.SEARCHING:
            raise RuntimeError(f"{self.filepath.name} is still being compressed")
        self.status = ImageStatus.IDLE
        self.progress = 0.0
        self.result = None
        self.error = None
        self.output_path = None
        self.output_extension = ""


class ImageProcessor:
    """Runs target-size searches for a queue of images"""

    def __init__(self, settings: Optional[AppSettings] = None):
        """Initialize processor with empty queue

        Args:
            settings: Search settings and worker count (defaults if None)
        """
        self.settings = settings or AppSettings()
        self.engine = TargetSizeEncoder(
            settings=self.settings.search,
            options=self.settings.encoder,
        )
        self.queue: List[ImageTask] = []
        self.stop_flag = threading.Event()
        self._status_lock = threading.Lock()

    def add_to_queue(self, task: ImageTask) -> None:
        """
        Add task to processing queue.

        Args:
            task: ImageTask to add
        """
        self.queue.append(task)

    def add_file(self, filepath: Path, target_bytes: Optional[int] = None) -> ImageTask:
        """Queue a file with the given (or default) target size."""
        task = ImageTask(
            filepath=Path(filepath),
            target_bytes=target_bytes or self.settings.target_bytes,
        )
        self.add_to_queue(task)
        return task

    def remove_from_queue(self, index: int) -> None:
        """
        Remove task from queue by index.

        Args:
            index: Index of task to remove
        """
        if 0 <= index < len(self.queue):
            self.queue.pop(index)

    def clear_queue(self) -> None:
        """Clear all tasks from queue"""
        self.queue.clear()

    def get_queue_size(self) -> int:
        """Get number of tasks in queue"""
        return len(self.queue)

    def stop(self) -> None:
        """Ask running searches to stop at their next iteration"""
        self.stop_flag.set()

    def _begin(self, task: ImageTask) -> None:
        with self._status_lock:
            if task.status is ImageStatus.SEARCHING:
                raise RuntimeError(f"{task.filepath.name} is already being compressed")
            task.status = ImageStatus.SEARCHING
            task.progress = 0.0
            task.result = None
            task.error = None

    def process_single(
        self,
        task: ImageTask,
        progress_callback: Optional[TaskProgressCallback] = None,
    ) -> Optional[CompressionResult]:
        """
        Decode and compress one image, updating its status.

        Args:
            task: ImageTask to process
            progress_callback: Optional callback(task, percent)

        Returns:
            CompressionResult, or None if the task failed or was cancelled

        Raises:
            RuntimeError: If the task is already being compressed
        """
        self._begin(task)

        def on_progress(percent: float) -> None:
            task.progress = percent
            if progress_callback:
                progress_callback(task, percent)

        try:
            if self.stop_flag.is_set():
                raise SearchCancelled(f"Search cancelled for {task.filepath.name}")
            source = decode_image(task.filepath)
            task.output_extension = self.get_output_extension(source, task)
            result = self.engine.search(
                source,
                task.target_bytes,
                on_progress=on_progress,
                stop_flag=self.stop_flag,
            )
        except SearchCancelled:
            task.status = ImageStatus.CANCELLED
            logger.info("Cancelled: %s", task.filepath.name)
            return None
        except (CompressionError, OSError) as e:
            task.status = ImageStatus.FAILED
            task.error = str(e)
            logger.error("Failed: %s - %s", task.filepath.name, e)
            return None
        except Exception as e:
            task.status = ImageStatus.FAILED
            task.error = f"{type(e).__name__}: {e}"
            raise

        task.result = result
        task.status = ImageStatus.COMPLETED
        if not result.success:
            logger.warning(
                "%s: target %s unreachable, best is %s",
                task.filepath.name,
                format_bytes(task.target_bytes),
                format_bytes(result.final_size_bytes),
            )
        return result

    def get_output_extension(self, source: SourceImage, task: ImageTask) -> str:
        """Keep the input extension unless the image is re-encoded to another format"""
        encoder = encoder_for_source(source)
        if get_encoder(source.format) is encoder:
            return task.filepath.suffix
        return encoder.file_extension

    def _generate_output_path(
        self,
        task: ImageTask,
        output_dir: Path,
        overwrite: bool = False
    ) -> Path:
        """
        Generate "<stem>_exact<ext>" in output_dir.

        Args:
            task: Completed task
            output_dir: Output directory
            overwrite: If True, return path even if file exists

        Returns:
            Path object for output file
        """
        extension = task.output_extension or task.filepath.suffix

        output_path = output_dir / output_filename(task.filepath.name, extension)
        if overwrite:
            return output_path

        # Handle collisions by adding numeric suffix
        stem = output_path.stem
        counter = 1
        while output_path.exists():
            output_path = output_dir / f"{stem}_{counter}{extension}"
            counter += 1

        return output_path

    def save_result(self, task: ImageTask, output_dir: Path, overwrite: bool = False) -> Path:
        """
        Write a completed task's encoded bytes.

        Raises:
            ValueError: If the task has no result
        """
        if task.result is None:
            raise ValueError(f"No result to save for {task.filepath.name}")

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self._generate_output_path(task, output_dir, overwrite=overwrite)
        output_path.write_bytes(task.result.encoded_bytes)
        task.output_path = output_path
        return output_path

    def process_batch(
        self,
        output_dir: Optional[Path] = None,
        progress_callback: Optional[TaskProgressCallback] = None,
        overwrite: bool = False,
        max_workers: Optional[int] = None,
        save_beside_input: bool = False,
    ) -> Dict[str, Any]:
        """
        Compress all queued IDLE images concurrently.

        Each image is searched independently; a failure in one does not
        affect the others. Callbacks run on worker threads.

        Args:
            output_dir: Directory to write results to (None = keep in memory)
            progress_callback: Optional callback(task, percent)
            overwrite: If True, overwrite existing files
            max_workers: Concurrent searches (defaults to settings)
            save_beside_input: Write each result into its input's directory
                instead of output_dir

        Returns:
            Dict with 'completed', 'failed' and 'cancelled' task lists
        """
        self.stop_flag.clear()
        workers = max_workers or self.settings.max_workers
        workers = max(1, min(workers, MAX_WORKERS_CAP))

        pending = [task for task in self.queue if task.status is ImageStatus.IDLE]
        logger.info("Processing %d images with %d workers", len(pending), workers)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.process_single, task, progress_callback): task
                for task in pending
            }
            for future in as_completed(futures):
                task = futures[future]
                try:
                    future.result()
                except Exception as e:
                    # Unexpected codec failure; keep the rest of the batch going
                    task.status = ImageStatus.FAILED
                    task.error = f"{type(e).__name__}: {e}"
                    logger.exception("Unexpected error for %s", task.filepath.name)
                    continue

                destination = task.filepath.parent if save_beside_input else output_dir
                if destination is not None and task.status is ImageStatus.COMPLETED:
                    try:
                        self.save_result(task, destination, overwrite=overwrite)
                    except OSError as e:
                        task.status = ImageStatus.FAILED
                        task.error = f"Could not write output: {e}"
                        logger.error("Failed to save %s: %s", task.filepath.name, e)

        return {
            'completed': [t for t in pending if t.status is ImageStatus.COMPLETED],
            'failed': [t for t in pending if t.status is ImageStatus.FAILED],
            'cancelled': [t for t in pending if t.status is ImageStatus.CANCELLED],
        }
