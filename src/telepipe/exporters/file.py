"""
File exporter - appends each batch as one OTLP/JSON line.

The output is readable by the ``file`` receiver and by ``telepipe traces``.
With ``rotate_max_bytes`` the current file is renamed to ``<path>.1`` (one
backup, overwritten) once it grows past the limit.
"""

import threading
from pathlib import Path
from typing import ClassVar, TextIO

from pydantic import BaseModel, Field

from ..components.base import ExportError
from ..model.types import TelemetryBatch
from ..otlp import encode_json
from .base import Exporter


class FileExporterSettings(BaseModel):
    path: str
    rotate_max_bytes: int = Field(default=0, ge=0, description="0 = never rotate.")

    model_config = {"extra": "forbid"}


class FileExporter(Exporter):
    type_name: ClassVar[str] = "file"
    settings_model: ClassVar[type[BaseModel]] = FileExporterSettings

    def __init__(self, component_id, settings: FileExporterSettings) -> None:
        super().__init__(component_id, settings)
        self.path = Path(settings.path).expanduser()
        self._lock = threading.Lock()
        self._fh: TextIO | None = None

    def start(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if self._fh is None:
                self._fh = open(self.path, "a", encoding="utf-8")
        self.log.info("exporter.file.opened", path=str(self.path))

    def shutdown(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None

    def _rotate(self) -> None:
        assert self._fh is not None
        self._fh.close()
        backup = self.path.with_name(self.path.name + ".1")
        self.path.replace(backup)
        self._fh = open(self.path, "a", encoding="utf-8")
        self.log.info("exporter.file.rotated", path=str(self.path), backup=str(backup))

    def export(self, batch: TelemetryBatch) -> None:
        line = encode_json(batch) + "\n"
        with self._lock:
            if self._fh is None:
                raise ExportError(f"exporter '{self.id}' is not started")
            try:
                self._fh.write(line)
                self._fh.flush()
                limit = self.settings.rotate_max_bytes
                if limit and self._fh.tell() >= limit:
                    self._rotate()
            except OSError as e:
                raise ExportError(f"cannot write {self.path}: {e}") from e
