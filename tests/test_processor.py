"""Tests for batch processing and the per-image state machine."""

import threading

import pytest

from exactsize.compression import SearchSettings, TargetSizeEncoder
from exactsize.processor import ImageProcessor, ImageStatus, ImageTask
from exactsize.settings import AppSettings

from .conftest import FailingEncoder, encode_bytes, noise_image


@pytest.fixture
def processor():
    # Fewer iterations keep the real-encoder batch tests quick
    return ImageProcessor(AppSettings(max_workers=2, search=SearchSettings(iterations=10)))


@pytest.fixture
def image_files(tmp_path, jpeg_bytes, png_bytes):
    jpeg = tmp_path / "photo.jpg"
    jpeg.write_bytes(jpeg_bytes)
    png = tmp_path / "shot.png"
    png.write_bytes(png_bytes)
    return jpeg, png


def test_task_validation(tmp_path, image_files):
    with pytest.raises(ValueError):
        ImageTask(filepath=tmp_path / "missing.jpg", target_bytes=1000)
    with pytest.raises(ValueError):
        ImageTask(filepath=image_files[0], target_bytes=0)

    task = ImageTask(filepath=str(image_files[0]), target_bytes=1000)
    assert task.status is ImageStatus.IDLE
    assert task.original_size == image_files[0].stat().st_size


def test_queue_management(processor, image_files):
    processor.add_file(image_files[0], 10_000)
    processor.add_file(image_files[1])

    assert processor.get_queue_size() == 2
    assert processor.queue[1].target_bytes == processor.settings.target_bytes

    processor.remove_from_queue(5)
    assert processor.get_queue_size() == 2
    processor.remove_from_queue(0)
    assert processor.queue[0].filepath == image_files[1]
    processor.clear_queue()
    assert processor.get_queue_size() == 0


def test_process_single_completes(processor, image_files):
    jpeg = image_files[0]
    task = ImageTask(filepath=jpeg, target_bytes=jpeg.stat().st_size // 3)
    seen = []

    result = processor.process_single(task, lambda t, p: seen.append((t, p)))

    assert result is task.result
    assert task.status is ImageStatus.COMPLETED
    assert task.progress == 100
    assert result.final_size_bytes <= task.target_bytes
    assert all(t is task for t, _ in seen)
    assert seen[-1][1] == 100


def test_unreachable_target_is_completed_not_failed(processor, image_files):
    task = ImageTask(filepath=image_files[1], target_bytes=1)

    result = processor.process_single(task)

    assert task.status is ImageStatus.COMPLETED
    assert result is not None
    assert not result.success
    assert task.error is None


def test_corrupt_file_fails(processor, tmp_path):
    bad = tmp_path / "broken.jpg"
    bad.write_bytes(b"this is not a jpeg")
    task = ImageTask(filepath=bad, target_bytes=1000)

    assert processor.process_single(task) is None
    assert task.status is ImageStatus.FAILED
    assert "broken.jpg" in task.error


def test_task_already_searching_rejected(processor, image_files):
    task = ImageTask(filepath=image_files[0], target_bytes=10_000)
    task.status = ImageStatus.SEARCHING

    with pytest.raises(RuntimeError):
        processor.process_single(task)
    with pytest.raises(RuntimeError):
        task.reset()


def test_stop_before_start_cancels(processor, image_files):
    task = ImageTask(filepath=image_files[0], target_bytes=10_000)
    processor.stop()

    assert processor.process_single(task) is None
    assert task.status is ImageStatus.CANCELLED


def test_stop_during_search_cancels(processor, image_files):
    task = ImageTask(filepath=image_files[0], target_bytes=10_000)

    def on_progress(t, percent):
        processor.stop()

    assert processor.process_single(task, on_progress) is None
    assert task.status is ImageStatus.CANCELLED
    assert task.result is None


def test_batch_isolates_failures(processor, image_files, tmp_path):
    jpeg, png = image_files
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"\x00" * 64)
    for path in (jpeg, bad, png):
        processor.add_file(path, 8_000)

    summary = processor.process_batch()

    assert {t.filepath for t in summary['completed']} == {jpeg, png}
    assert [t.filepath for t in summary['failed']] == [bad]
    assert summary['cancelled'] == []
    for task in summary['completed']:
        assert task.result.final_size_bytes <= 8_000
        assert task.output_path is None


def test_batch_writes_exact_named_outputs(processor, image_files, tmp_path):
    out = tmp_path / "out"
    for path in image_files:
        processor.add_file(path, 20_000)

    processor.process_batch(out)

    names = sorted(p.name for p in out.iterdir())
    assert names == ["photo_exact.jpg", "shot_exact.png"]
    for task in processor.queue:
        assert task.output_path.read_bytes() == task.result.encoded_bytes


def test_output_collisions_get_numbered(processor, image_files, tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    (out / "photo_exact.jpg").write_bytes(b"existing")
    task = processor.add_file(image_files[0], 20_000)

    processor.process_batch(out)

    assert task.output_path.name == "photo_exact_1.jpg"
    assert (out / "photo_exact.jpg").read_bytes() == b"existing"


def test_overwrite_replaces_existing(processor, image_files, tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    (out / "photo_exact.jpg").write_bytes(b"existing")
    task = processor.add_file(image_files[0], 20_000)

    processor.process_batch(out, overwrite=True)

    assert task.output_path == out / "photo_exact.jpg"
    assert task.output_path.read_bytes() != b"existing"


def test_reencoded_format_changes_extension(processor, tmp_path):
    gif = tmp_path / "anim.gif"
    gif.write_bytes(encode_bytes(noise_image(48, 48).convert("P"), "GIF"))
    task = processor.add_file(gif, 4_000)

    processor.process_batch(tmp_path / "out")

    assert task.result.format_used == "PNG"
    assert task.output_path.name == "anim_exact.png"


def test_batch_skips_finished_tasks(processor, image_files):
    task = processor.add_file(image_files[0], 20_000)
    processor.process_batch()
    first_result = task.result

    summary = processor.process_batch()

    assert summary['completed'] == []
    assert task.result is first_result

    task.reset()
    assert task.status is ImageStatus.IDLE
    assert processor.process_batch()['completed'] == [task]


def test_batch_runs_searches_concurrently(image_files):
    processor = ImageProcessor(AppSettings(max_workers=2, search=SearchSettings(iterations=4)))
    both_running = threading.Barrier(2, timeout=10)
    waited = set()

    def on_progress(task, percent):
        if task.filepath not in waited:
            waited.add(task.filepath)
            both_running.wait()

    for path in image_files:
        processor.add_file(path, 20_000)

    summary = processor.process_batch(progress_callback=on_progress)

    assert len(summary['completed']) == 2
    assert not both_running.broken


def test_encode_error_fails_only_that_image(processor, image_files):
    jpeg, png = image_files
    processor.engine = TargetSizeEncoder(FailingEncoder(fail_on=3, fail_for=jpeg.name))
    bad = processor.add_file(jpeg, 500_000)
    good = processor.add_file(png, 500_000)

    summary = processor.process_batch()

    assert summary['failed'] == [bad]
    assert summary['completed'] == [good]
    assert bad.status is ImageStatus.FAILED
    assert bad.result is None
    assert jpeg.name in bad.error
    assert good.result.final_size_bytes <= 500_000


def test_save_beside_input(processor, image_files):
    jpeg, png = image_files
    for path in image_files:
        processor.add_file(path, 20_000)

    processor.process_batch(save_beside_input=True)

    assert processor.queue[0].output_path == jpeg.parent / "photo_exact.jpg"
    assert processor.queue[1].output_path == png.parent / "shot_exact.png"


def test_write_failure_marks_task_failed(processor, image_files):
    jpeg, png = image_files
    (png.parent / "shot_exact.png").mkdir()
    photo = processor.add_file(jpeg, 20_000)
    shot = processor.add_file(png, 20_000)

    summary = processor.process_batch(save_beside_input=True, overwrite=True)

    assert summary['completed'] == [photo]
    assert summary['failed'] == [shot]
    assert "Could not write output" in shot.error
    assert photo.output_path.is_file()
