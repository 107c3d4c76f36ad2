from pathlib import Path

from storage.file_storage import FileStorage


def test_job_files_are_namespaced_by_id(tmp_path):
    storage = FileStorage(tmp_path / "cache", tmp_path / "out")
    files = storage.job_files("abc", "IMG_1.JPG")
    assert files.bg == str(tmp_path / "cache" / "abc_bg.jpg")
    assert files.main == str(tmp_path / "cache" / "abc_main.jpg")
    assert files.mask == str(tmp_path / "cache" / "abc_mask.png")
    assert files.composite == str(tmp_path / "out" / "IMG_1.JPG")


def test_composite_name_is_made_unique(tmp_path):
    storage = FileStorage(tmp_path / "cache", tmp_path / "out")
    (tmp_path / "out" / "shot.jpg").write_bytes(b"x")
    (tmp_path / "out" / "shot (1).jpg").write_bytes(b"x")
    assert Path(storage.job_files("id", "shot.jpg").composite).name == "shot (2).jpg"


def test_non_jpeg_names_get_jpg_extension(tmp_path):
    storage = FileStorage(tmp_path / "cache", tmp_path / "out")
    assert Path(storage.job_files("id", "scan.heic").composite).name == "scan.jpg"


def test_custom_output_dir_is_created(tmp_path):
    storage = FileStorage(tmp_path / "cache", tmp_path / "out")
    files = storage.job_files("id", "a.jpg", output_dir=tmp_path / "elsewhere")
    assert (tmp_path / "elsewhere").is_dir()
    assert Path(files.composite).parent == tmp_path / "elsewhere"


def test_delete_cache_files(tmp_path):
    storage = FileStorage(tmp_path / "cache", tmp_path / "out")
    files = storage.job_files("id", "a.jpg")
    for _, path in files.items():
        Path(path).write_bytes(b"x")

    # mask already gone; missing files are not an error
    Path(files.mask).unlink()
    assert storage.delete_cache_files(files) == 2
    assert Path(files.composite).exists()
    assert storage.delete_cache_files(files, keep_composite=False) == 1
    assert not Path(files.composite).exists()


def test_pending_composites_get_distinct_names(tmp_path):
    storage = FileStorage(tmp_path / "cache", tmp_path / "out")
    first = storage.job_files("a", "shot.jpg")
    second = storage.job_files("b", "shot.jpg")
    assert Path(first.composite).name == "shot.jpg"
    assert Path(second.composite).name == "shot (1).jpg"

    # a released name that was never written is free again
    storage.release_output(first)
    assert Path(storage.job_files("c", "shot.jpg").composite).name == "shot.jpg"
