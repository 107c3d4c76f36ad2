"""
File storage for watermark jobs.

Files are organized as:
- {cache_root}/{job_id}_bg.jpg    - Rendered background
- {cache_root}/{job_id}_main.jpg  - Orientation-corrected main photo
- {cache_root}/{job_id}_mask.png  - Shadow/cutout mask from the renderer
- {output_root}/{name}.jpg        - Final composite (unique name)
"""
import logging
import threading
from pathlib import Path
from typing import Optional, Set, Union

from domain.models import OutputFileSet

logger = logging.getLogger(__name__)

JPEG_SUFFIXES = (".jpg", ".jpeg")


class FileStorage:
    """
    Local file storage implementation.

    Each job exclusively owns the cache files namespaced by its id. A
    composite path is reserved from job_files() until release_output(), so
    jobs created together never pick the same name.
    """

    def __init__(self, cache_root: Union[str, Path] = "data/cache", output_root: Union[str, Path] = "data/output"):
        self.cache_root = Path(cache_root)
        self.output_root = Path(output_root)
        self.cache_root.mkdir(parents=True, exist_ok=True)
        self.output_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._reserved: Set[str] = set()

    def unique_output_path(self, output_dir: Union[str, Path], name: str) -> Path:
        """
        Path for `name` inside output_dir that does not exist yet.

        The extension is forced to .jpg (kept if already .jpg/.jpeg); clashes
        get a " (n)" suffix before the extension.
        """
        out_dir = Path(output_dir)
        raw = Path(name).name or "output.jpg"
        stem = Path(raw).stem or "output"
        suffix = Path(raw).suffix if Path(raw).suffix.lower() in JPEG_SUFFIXES else ".jpg"
        candidate = out_dir / f"{stem}{suffix}"
        n = 1
        while candidate.exists() or str(candidate) in self._reserved:
            candidate = out_dir / f"{stem} ({n}){suffix}"
            n += 1
        return candidate

    def job_files(self, job_id: str, name: str, output_dir: Optional[Union[str, Path]] = None) -> OutputFileSet:
        """
        Derive the cache and composite paths of a job.

        Args:
            job_id: Unique job id (cache namespace)
            name: Original file name, used for the composite
            output_dir: Where the composite goes; defaults to output_root

        Returns:
            OutputFileSet with absolute-or-relative paths as configured
        """
        base = self.cache_root / job_id
        out_dir = Path(output_dir) if output_dir is not None else self.output_root
        out_dir.mkdir(parents=True, exist_ok=True)
        return OutputFileSet(
            base=str(base),
            bg=f"{base}_bg.jpg",
            main=f"{base}_main.jpg",
            mask=f"{base}_mask.png",
            composite=self._reserve_output(out_dir, name),
        )

    def _reserve_output(self, out_dir: Path, name: str) -> str:
        with self._lock:
            path = str(self.unique_output_path(out_dir, name))
            self._reserved.add(path)
        return path

    def release_output(self, files: OutputFileSet) -> None:
        """Drop the reservation on a job's composite path."""
        with self._lock:
            self._reserved.discard(files.composite)

    def delete_cache_files(self, files: OutputFileSet, keep_composite: bool = True) -> int:
        """Delete a job's files. Failures are logged and swallowed. Returns the count deleted."""
        deleted = 0
        for key, path in files.items():
            if keep_composite and key == "composite":
                continue
            p = Path(path)
            try:
                if p.exists():
                    p.unlink()
                    deleted += 1
            except OSError:
                logger.debug("failed to delete cache file %s", p, exc_info=True)
        return deleted
