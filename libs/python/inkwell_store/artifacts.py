"""Filesystem-backed storage for generated images and print-ready PDFs."""

from __future__ import annotations

import os
import shutil
from pathlib import Path


class ArtifactStorage:
    """Writes artifacts under ``root`` and serves them from ``base_url``."""

    def __init__(self, root: str | os.PathLike[str], base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_env(cls) -> "ArtifactStorage":
        root = os.getenv("STORAGE_ROOT", os.path.join(os.getcwd(), "storage"))
        base_url = os.getenv("ARTIFACT_BASE_URL", "http://localhost:9300/artifacts")
        return cls(root, base_url)

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Artifact key escapes storage root: {key}")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    def save_bytes(self, key: str, data: bytes) -> str:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return self.url_for(key)

    def save_file(self, key: str, source: str | os.PathLike[str]) -> str:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, path)
        return self.url_for(key)
