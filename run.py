import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml

from labreport.commons.logger import logger, setup_logging
from labreport.commons.report_engine import ReportEngine
from labreport.services.report_service import ReportService
from labreport.validation.validators import load_record_text

app = typer.Typer(add_completion=False, help="Lab report composer")

DEFAULT_CONFIG = "labreport/configs/settings.yaml"


def resource_path(relative_path: str) -> str:
    """Absolute path to a bundled resource, both from a PyInstaller build and in development."""
    if hasattr(sys, "_MEIPASS"):
        base_path = sys._MEIPASS
    else:
        base_path = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(base_path, relative_path)


def load_cfg(path: Optional[str] = None) -> dict:
    config_path = path or resource_path(DEFAULT_CONFIG)
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _engine(config: Optional[str]) -> ReportEngine:
    engine = ReportEngine(load_cfg(config))
    setup_logging(engine.settings.paths.logs_root, os.getenv("LOG_LEVEL", "INFO"))
    return engine


def _emit(payload: dict, out: Optional[Path]):
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if out:
        out.write_text(text, encoding="utf-8")
    else:
        typer.echo(text)


@app.command()
def compose(
    record: Path = typer.Argument(..., exists=True, dir_okay=False, help="exported patient record (JSON)"),
    out: Optional[Path] = typer.Option(None, help="write the report JSON here instead of stdout"),
    config: Optional[str] = typer.Option(None, help="settings YAML"),
):
    """Compose the classified report rows for one patient record."""
    engine = _engine(config)
    data = load_record_text(record.read_text(encoding="utf-8"))
    _emit(engine.compose_payload(data), out)


@app.command("out-of-range")
def out_of_range(
    record: Path = typer.Argument(..., exists=True, dir_okay=False),
    config: Optional[str] = typer.Option(None, help="settings YAML"),
):
    """List the parameters outside their reference range, per test."""
    engine = _engine(config)
    data = load_record_text(record.read_text(encoding="utf-8"))
    _emit(engine.out_of_range_payload(data), None)


@app.command()
def classify(
    value: str,
    range_text: str = typer.Argument(..., metavar="RANGE"),
    config: Optional[str] = typer.Option(None, help="settings YAML"),
):
    """Classify a single value against a range string, e.g. `classify 3 "4-7"`."""
    engine = ReportEngine(load_cfg(config))
    dev = engine.classify_text(value, range_text)
    typer.echo(json.dumps({"level": dev.level, "severity": dev.severity, "label": dev.label}))


@app.command()
def watch(config: Optional[str] = typer.Option(None, help="settings YAML")):
    """Process the inbox backlog, then keep watching it for new exports."""
    engine = _engine(config)
    logger.info("Starting report composer on the records inbox")
    svc = ReportService(engine, engine.settings.paths)
    asyncio.run(svc.run_file_mode(engine.settings.watch.filename_glob))


if __name__ == "__main__":
    app()
