"""SHA256SUMS manifest over the published jams and entry documents."""
from __future__ import annotations

import hashlib
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config import ENTRY_DOCUMENTS, HASH_CHUNK_SIZE, HASH_WORKERS, JAM_EXTENSION
from jobs.errors import ManifestEmpty, ManifestIOFailure
from jobs.live_log import LiveLog
from observability.logger import get_logger, log_stage

LOGGER = get_logger("jam_api.manifest")

MANIFEST_LINE_RE = re.compile(r"^([a-fA-F0-9]{64})\s+(.+)$")
NODE_DATA_DIRNAME = ".data.nockchain"
MANIFEST_MODE = 0o644


def hash_file(path: Path, *, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def iter_artifacts(artifacts_dir: Path) -> List[Path]:
    """Return ``*.jam`` files in ``artifacts_dir``; unreadable dirs yield none."""

    try:
        entries = list(os.scandir(artifacts_dir))
    except OSError:
        return []
    found = []
    for entry in entries:
        if entry.name.endswith(JAM_EXTENSION):
            try:
                if entry.is_file():
                    found.append(Path(entry.path))
            except OSError:
                continue
    return found


def count_artifacts(artifacts_dir: Path) -> int:
    return len(iter_artifacts(artifacts_dir))


def collect_files(html_root: Path, entry_documents: Iterable[str], artifacts_dir: Path) -> List[Path]:
    files = [html_root / name for name in entry_documents if (html_root / name).is_file()]
    files.extend(iter_artifacts(artifacts_dir))
    # Enumeration order varies by filesystem; the manifest must not.
    return sorted({path.absolute() for path in files})


def relative_name(path: Path, html_root: Path) -> str:
    try:
        return path.relative_to(html_root.absolute()).as_posix()
    except ValueError:
        return path.as_posix()


class ManifestBuilder:
    """Hash every publishable file and atomically replace the manifest."""

    def __init__(
        self,
        html_root: Path,
        artifacts_dir: Path,
        manifest_path: Path,
        *,
        entry_documents: Sequence[str] = ENTRY_DOCUMENTS,
        workers: int = HASH_WORKERS,
    ) -> None:
        self.html_root = Path(html_root)
        self.artifacts_dir = Path(artifacts_dir)
        self.manifest_path = Path(manifest_path)
        self.entry_documents = tuple(entry_documents)
        self._workers = max(1, int(workers))

    @classmethod
    def from_settings(cls, settings) -> "ManifestBuilder":
        return cls(
            settings.html_root,
            settings.jams_dir,
            settings.manifest_path,
            entry_documents=settings.entry_documents,
            workers=settings.hash_workers,
        )

    def render(self) -> str:
        files = collect_files(self.html_root, self.entry_documents, self.artifacts_dir)
        if not files:
            raise ManifestEmpty("No files found to hash")
        try:
            with ThreadPoolExecutor(max_workers=min(self._workers, len(files)), thread_name_prefix="sha256") as pool:
                # map() yields in submission order, i.e. sorted path order.
                digests = list(pool.map(hash_file, files))
        except OSError as exc:
            raise ManifestIOFailure(f"Failed to hash {getattr(exc, 'filename', None) or 'file'}: {exc}") from exc
        return "".join(
            f"{digest}  {relative_name(path, self.html_root)}\n" for digest, path in zip(digests, files)
        )

    def rebuild(self, log: Optional[LiveLog] = None) -> int:
        """Regenerate the manifest; return the number of files listed."""

        content = self.render()
        tmp_path = self.manifest_path.with_name(self.manifest_path.name + ".tmp")
        try:
            self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content, encoding="utf-8")
            os.replace(tmp_path, self.manifest_path)
        except OSError as exc:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise ManifestIOFailure(f"Failed to write manifest {self.manifest_path}: {exc}") from exc
        try:
            os.chmod(self.manifest_path, MANIFEST_MODE)
        except OSError as exc:
            LOGGER.warning("manifest_chmod_failed", extra={"path": str(self.manifest_path), "error": str(exc)})

        count = content.count("\n")
        if log is not None:
            log.append(f"[jammer] Manifest written: {self.manifest_path} ({count} files)")
        log_stage(LOGGER, stage="manifest", status="written", files=count, path=str(self.manifest_path))
        return count

    def verify(self) -> "VerifyReport":
        return verify_manifest(self.manifest_path, self.html_root, artifacts_dir=self.artifacts_dir)


@dataclass
class VerifyReport:
    ok: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    # rel -> (expected, actual); actual is None when the file could not be read.
    digests: Dict[str, Tuple[str, Optional[str]]] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return not self.missing and not self.failed

    def lines(self) -> List[str]:
        output = [f"OK: {name}" for name in self.ok]
        output.extend(f"MISSING: {name}" for name in self.missing)
        for name in self.failed:
            output.append(f"FAIL: {name}")
            if name in self.digests:
                expected, actual = self.digests[name]
                output.append(f"  expected: {expected}")
                output.append(f"  actual:   {actual or '(unreadable)'}")
        output.extend(f"WARN: {warning}" for warning in self.warnings)
        output.append("Integrity check PASSED" if self.passed else "Integrity check FAILED")
        return output


def verify_manifest(manifest_path: Path, html_root: Path, *, artifacts_dir: Optional[Path] = None) -> VerifyReport:
    """Re-hash every file listed in the manifest and compare digests."""

    try:
        text = Path(manifest_path).read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ManifestIOFailure(f"Manifest not found: {manifest_path}") from exc
    except OSError as exc:
        raise ManifestIOFailure(f"Failed to read manifest {manifest_path}: {exc}") from exc

    report = VerifyReport()
    for line in text.splitlines():
        if not line.strip():
            continue
        match = MANIFEST_LINE_RE.match(line)
        if not match:
            report.warnings.append(f"Skipping invalid manifest line: {line}")
            continue
        expected, rel = match.group(1).lower(), match.group(2)
        target = Path(html_root) / rel
        if not target.is_file():
            report.missing.append(rel)
            continue
        try:
            actual = hash_file(target)
        except OSError as exc:
            report.failed.append(rel)
            report.digests[rel] = (expected, None)
            report.warnings.append(f"Cannot read {rel}: {exc}")
            continue
        if actual == expected:
            report.ok.append(rel)
        else:
            report.failed.append(rel)
            report.digests[rel] = (expected, actual)

    if artifacts_dir is not None and (Path(artifacts_dir) / NODE_DATA_DIRNAME).is_dir():
        report.warnings.append(f"{Path(artifacts_dir) / NODE_DATA_DIRNAME} exists (should not be web-exposed).")
    return report


__all__ = [
    "ManifestBuilder",
    "VerifyReport",
    "collect_files",
    "count_artifacts",
    "hash_file",
    "iter_artifacts",
    "verify_manifest",
]
