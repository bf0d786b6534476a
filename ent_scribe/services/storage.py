"""
Template and visit storage

The recording pipeline only sees the two ports: it reads a template's content
and writes one visit per completed session. The JSON implementations keep the
data under `settings.data_dir`.
"""

import json
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from ent_scribe.config import Settings, settings
from ent_scribe.core.logging import get_logger
from ent_scribe.models.domain import Template, Visit
from ent_scribe.services.default_templates import DEFAULT_TEMPLATES

logger = get_logger(__name__)


def _millis() -> int:
    return int(time.time() * 1000)


class TemplateStore(ABC):
    @abstractmethod
    def list_templates(self) -> List[Template]: ...

    def get_template(self, template_id: str) -> Optional[Template]:
        for template in self.list_templates():
            if template.id == template_id:
                return template
        return None


class VisitStore(ABC):
    @abstractmethod
    def save_visit(
        self,
        template_name: str,
        note: str,
        transcript: str,
        patient_name: Optional[str] = None,
        patient_dob: Optional[str] = None,
    ) -> Visit: ...


def _read_json_list(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable store file {path}: {e}")
        return []
    return data if isinstance(data, list) else []


def _write_json_list(path: Path, items: List[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(items, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


class JsonTemplateStore(TemplateStore):
    """Built-in templates plus user templates persisted as JSON. Built-ins cannot be changed."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = RLock()

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "JsonTemplateStore":
        return cls(Path(config.data_dir) / "templates.json")

    def _custom_templates(self) -> List[Template]:
        templates = []
        for item in _read_json_list(self.path):
            try:
                templates.append(Template.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed template entry: {e}")
        return templates

    def _write(self, templates: List[Template]) -> None:
        _write_json_list(self.path, [t.model_dump(by_alias=True) for t in templates])

    def list_templates(self) -> List[Template]:
        with self._lock:
            return [t.model_copy() for t in DEFAULT_TEMPLATES] + self._custom_templates()

    def save_template(self, name: str, content: str) -> Template:
        with self._lock:
            customs = self._custom_templates()
            taken = {t.id for t in customs}
            stamp = _millis()
            while f"custom-{stamp}" in taken:
                stamp += 1
            template = Template(id=f"custom-{stamp}", name=name, content=content, is_default=False)
            customs.append(template)
            self._write(customs)
            logger.info(f"Saved template {template.id}")
            return template

    def update_template(self, template_id: str, name: Optional[str] = None, content: Optional[str] = None) -> Optional[Template]:
        with self._lock:
            customs = self._custom_templates()
            for index, template in enumerate(customs):
                if template.id != template_id:
                    continue
                updates = {k: v for k, v in (("name", name), ("content", content)) if v is not None}
                customs[index] = template.model_copy(update=updates)
                self._write(customs)
                return customs[index]
            return None

    def delete_template(self, template_id: str) -> bool:
        with self._lock:
            customs = self._custom_templates()
            remaining = [t for t in customs if t.id != template_id]
            if len(remaining) == len(customs):
                return False
            self._write(remaining)
            return True


def _new_visit(
    template_name: str,
    note: str,
    transcript: str,
    patient_name: Optional[str],
    patient_dob: Optional[str],
    taken: Set[str] = frozenset(),
) -> Visit:
    stamp = _millis()
    while f"visit-{stamp}" in taken:
        stamp += 1
    return Visit(
        id=f"visit-{stamp}",
        date=datetime.now(timezone.utc).isoformat(),
        template_name=template_name,
        patient_name=patient_name,
        patient_dob=patient_dob,
        note=note,
        transcript=transcript,
    )


class InMemoryVisitStore(VisitStore):
    def __init__(self):
        self._lock = RLock()
        self.visits: List[Visit] = []

    def save_visit(self, template_name, note, transcript, patient_name=None, patient_dob=None) -> Visit:
        with self._lock:
            taken = {v.id for v in self.visits}
            visit = _new_visit(template_name, note, transcript, patient_name, patient_dob, taken)
            self.visits.insert(0, visit)
        return visit


class JsonVisitStore(VisitStore):
    """Most recent visits first, capped at `max_visits`."""

    def __init__(self, path: Path, max_visits: int = 50):
        self.path = Path(path)
        self.max_visits = max_visits
        self._lock = RLock()

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "JsonVisitStore":
        return cls(Path(config.data_dir) / "visits.json", max_visits=config.max_visits)

    def list_visits(self) -> List[Visit]:
        with self._lock:
            visits = []
            for item in _read_json_list(self.path):
                try:
                    visits.append(Visit.model_validate(item))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed visit entry: {e}")
            return visits

    def _write(self, visits: List[Visit]) -> None:
        _write_json_list(self.path, [v.model_dump(by_alias=True) for v in visits])

    def save_visit(self, template_name, note, transcript, patient_name=None, patient_dob=None) -> Visit:
        with self._lock:
            existing = self.list_visits()
            visit = _new_visit(template_name, note, transcript, patient_name, patient_dob, {v.id for v in existing})
            visits = [visit] + existing
            self._write(visits[:self.max_visits])
        logger.info(f"Saved visit {visit.id}")
        return visit

    def delete_visit(self, visit_id: str) -> bool:
        with self._lock:
            visits = self.list_visits()
            remaining = [v for v in visits if v.id != visit_id]
            if len(remaining) == len(visits):
                return False
            self._write(remaining)
            return True

    def clear_visits(self) -> None:
        with self._lock:
            self.path.unlink(missing_ok=True)
