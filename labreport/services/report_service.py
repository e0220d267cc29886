# labreport/services/report_service.py
import asyncio
import json
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from labreport.commons.logger import logger
from labreport.commons.report_engine import ReportEngine
from labreport.helpers.file_transport import InboxWatcher, JsonWriter
from labreport.validation.validators import load_record_text

READ_ATTEMPTS = 3


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")


def _safe(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_\-]", "_", name)


def generate_report_filename(patient_id: str, source: str = "", extension: str = "json") -> str:
    """
    Report filename with timestamp, patient id and source file.
    E.g.: 20250821-170605-123456_P0042_export_0042.json
    """
    safe_id = _safe(patient_id or "unknown")
    if source:
        safe_base = _safe(os.path.splitext(os.path.basename(source))[0])
        return f"{_timestamp()}_{safe_id}_{safe_base}.{extension}"
    return f"{_timestamp()}_{safe_id}.{extension}"


def generate_error_filename(source: str = "") -> str:
    """E.g.: 20250821-170605-123456_export_0042.json"""
    return f"{_timestamp()}_{Path(source).name if source else 'record.err.json'}"


class ReportService:
    def __init__(self, engine: ReportEngine, paths):
        self.engine = engine
        self.paths = paths
        self.writer = JsonWriter(paths.archive)
        Path(paths.error).mkdir(parents=True, exist_ok=True)

    def _to_error(self, data: Union[str, bytes], src: str, keep_source: bool = False) -> Path:
        errp = Path(self.paths.error) / generate_error_filename(src)
        if isinstance(data, bytes):
            errp.write_bytes(data)
        else:
            errp.write_text(data, encoding="utf-8")
        if not keep_source and src and Path(src).exists():
            Path(src).unlink()
        return errp

    def process_text(self, text: str, src: str = "") -> Optional[str]:
        """Compose one exported record. Returns the report path, or None when the record was not composed."""
        if not text.strip():
            # exporter has created the file but not written it yet
            logger.debug(f"Skipping empty export {src or '<text>'}")
            return None
        try:
            # 1) parse and validate
            data = load_record_text(text)
            record = self.engine.load(data)
            # 2) compose rows and the out-of-range summary
            composer = self.engine.composer
            payload = composer.to_payload(record, self.engine.compose(record))
            payload["outOfRange"] = composer.summary_payload(composer.out_of_range(record))
            # 3) write report JSON
            out = self.writer.write(generate_report_filename(record.patient_id, src), payload)
            logger.info(f"Report composed for patient {record.patient_id or '?'}: {out}")

            # 4) move the processed export to archive/json/
            if src and Path(src).exists():
                dst_dir = Path(self.paths.archive) / "json"
                dst_dir.mkdir(parents=True, exist_ok=True)
                shutil.move(src, dst_dir / Path(src).name)
            return out

        except json.JSONDecodeError as ex:
            # possibly a partial write: copy it aside, the source stays in the inbox
            errp = self._to_error(text, src, keep_source=True)
            logger.error(f"Unreadable record {src or '<text>'}: {ex}; copy in {errp.name}")
            return None
        except ValidationError as ve:
            errp = self._to_error(text, src)
            logger.error(f"Validation failed for {errp.name}: {ve}")
            return None
        except ValueError as ex:
            errp = self._to_error(text, src)
            logger.error(f"Rejected record {errp.name}: {ex}")
            return None

    async def _read(self, path: Path) -> Optional[bytes]:
        for attempt in range(1, READ_ATTEMPTS + 1):
            try:
                return path.read_bytes()
            except FileNotFoundError:
                # already archived or moved to error/ by an earlier event
                return None
            except OSError as e:
                if attempt == READ_ATTEMPTS:
                    raise
                logger.warning(f"Could not read {path}: {e}; retrying...")
                await asyncio.sleep(0.1)
        return None

    async def _process_file(self, src: str):
        path = Path(src)
        try:
            raw = await self._read(path)
            if raw is None:
                return
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as ex:
                errp = self._to_error(raw, src)
                logger.error(f"{path.name} is not UTF-8 ({ex}); moved to {errp.name}")
                return
            self.process_text(text, src)
        except Exception as ex:
            # keep the watcher alive; the file stays in the inbox for the next backlog pass
            logger.exception(f"Unexpected failure with {src}: {ex}")

    async def _process_backlog(self, glob_pat: str):
        inbox = Path(self.paths.inbox)
        files = sorted(inbox.glob(glob_pat))
        if not files:
            return
        logger.info(f"Backlog found: {len(files)} file(s) in {inbox}")
        for f in files:
            await self._process_file(str(f))

    async def run_file_mode(self, glob_pat: str, stop_event: Optional[asyncio.Event] = None):
        loop = asyncio.get_running_loop()

        # 1) existing backlog
        await self._process_backlog(glob_pat)

        # 2) watcher for new exports
        watcher = InboxWatcher(self.paths.inbox, glob_pat, self._process_file, loop)
        watcher.start()
        logger.info(f"Watching {self.paths.inbox} for patient records...")
        try:
            await (stop_event or asyncio.Event()).wait()
        finally:
            watcher.stop()
