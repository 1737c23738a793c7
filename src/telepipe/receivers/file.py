"""
File receiver - reads OTLP/JSON lines (one export request per line).

With ``replay: true`` the whole file is pushed into the pipelines once, on
start. ``replay()`` can also be called directly. Lines that are not valid
OTLP/JSON are logged and skipped; a line whose signal has no pipeline is
skipped too.
"""

import logging
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel

from ..components.base import ConfigError
from ..logging.human import HumanLog
from ..otlp import OTLPDecodeError, decode_json
from .base import Receiver

_hlog = HumanLog(logging.getLogger("telepipe.receiver"))


class FileReceiverSettings(BaseModel):
    path: str
    replay: bool = True

    model_config = {"extra": "forbid"}


class FileReceiver(Receiver):
    type_name: ClassVar[str] = "file"
    settings_model: ClassVar[type[BaseModel]] = FileReceiverSettings

    def __init__(self, component_id, settings: FileReceiverSettings) -> None:
        super().__init__(component_id, settings)
        self.path = Path(settings.path).expanduser()

    def start(self) -> None:
        if not self.path.exists():
            raise ConfigError(f"receiver '{self.id}': file not found: {self.path}")
        if self.settings.replay:
            self.replay()

    def replay(self) -> tuple[int, int]:
        """Push every line of the file into the pipelines.

        Returns:
            (lines delivered, lines skipped)
        """
        delivered = skipped = 0
        with open(self.path, "rb") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    batch = decode_json(line)
                except OTLPDecodeError as e:
                    skipped += 1
                    self.log.warning("receiver.file.bad_line", line=lineno, error=str(e))
                    continue
                if not self.has_consumer(batch.signal):
                    skipped += 1
                    self.log.debug(
                        "receiver.file.unwired_signal", line=lineno, signal=batch.signal.value
                    )
                    continue
                self.deliver(batch)
                delivered += 1

        self.log.info("receiver.file.replayed", path=str(self.path), lines=delivered, skipped=skipped)
        _hlog.file_replayed(str(self.path), delivered, skipped)
        return delivered, skipped
