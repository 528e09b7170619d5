"""
Import Schemas - Data shapes shared by the parser, validator, orchestrator and worker

Everything crossing the Celery boundary is converted to plain dicts with
to_dict()/from_dict() so task payloads stay JSON-serializable.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from services.exceptions import InvalidImportConfig


# A raw spreadsheet row: column name -> cell text (None for empty cells)
RawRow = Dict[str, Optional[str]]


@dataclass
class ParsedContact:
    """Canonical contact produced by ImportValidator for one row"""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    custom_fields: Optional[Dict[str, Any]] = None


def _parse_bool(value: Any, default: bool) -> bool:
    """Form fields arrive as 'true'/'false' strings; JSON payloads as bools"""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


@dataclass(frozen=True)
class ImportConfig:
    """
    Options for one import run. Supplied once, never mutated during the run.

    Attributes:
        skip_duplicates: Look up an existing contact by email before inserting
        update_existing: Overwrite a duplicate's fields instead of skipping it
        create_tags: Materialize collected tag names as organization tags
        column_mapping: Source column -> canonical field, applied before validation
    """
    skip_duplicates: bool = True
    update_existing: bool = False
    create_tags: bool = True
    column_mapping: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def parse_column_mapping(raw: Any) -> Dict[str, str]:
        """
        Accept a dict or a JSON-encoded object string.

        Raises:
            InvalidImportConfig: If the value is not a string-to-string object
        """
        if raw is None or raw == '':
            return {}
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise InvalidImportConfig(f"columnMapping is not valid JSON: {e.msg}")
        if not isinstance(raw, dict):
            raise InvalidImportConfig("columnMapping must be a JSON object")

        mapping = {}
        for source, target in raw.items():
            if not isinstance(target, str):
                raise InvalidImportConfig(f"columnMapping target for '{source}' must be a string")
            mapping[str(source)] = target
        return mapping

    @classmethod
    def from_form(cls, form) -> 'ImportConfig':
        """Build from multipart form fields (camelCase names)"""
        return cls(
            skip_duplicates=_parse_bool(form.get('skipDuplicates'), True),
            update_existing=_parse_bool(form.get('updateExisting'), False),
            create_tags=_parse_bool(form.get('createTags'), True),
            column_mapping=cls.parse_column_mapping(form.get('columnMapping')),
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ImportConfig':
        data = data or {}
        return cls(
            skip_duplicates=_parse_bool(data.get('skipDuplicates'), True),
            update_existing=_parse_bool(data.get('updateExisting'), False),
            create_tags=_parse_bool(data.get('createTags'), True),
            column_mapping=cls.parse_column_mapping(data.get('columnMapping')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'skipDuplicates': self.skip_duplicates,
            'updateExisting': self.update_existing,
            'createTags': self.create_tags,
            'columnMapping': dict(self.column_mapping),
        }


@dataclass
class ImportErrorDetail:
    line: int
    error: str
    field: Optional[str] = None
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        detail = {'line': self.line, 'error': self.error}
        if self.field is not None:
            detail['field'] = self.field
        if self.value is not None:
            detail['value'] = self.value
        return detail


@dataclass
class ImportResult:
    """
    Aggregate outcome of one import run.

    success + duplicates + errors == total once the run completes.
    `inserted` counts rows actually written by bulk inserts and drives the
    organization contact counter; it is not part of the public shape.
    """
    total: int = 0
    success: int = 0
    duplicates: int = 0
    errors: int = 0
    error_details: List[ImportErrorDetail] = field(default_factory=list)
    inserted: int = 0

    def add_error(self, line: int, error: str, field: Optional[str] = None,
                  value: Optional[str] = None, count: int = 1) -> None:
        self.errors += count
        self.error_details.append(ImportErrorDetail(line=line, error=error, field=field, value=value))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'success': self.success,
            'duplicates': self.duplicates,
            'errors': self.errors,
            'errorDetails': [detail.to_dict() for detail in self.error_details],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImportResult':
        return cls(
            total=data.get('total', 0),
            success=data.get('success', 0),
            duplicates=data.get('duplicates', 0),
            errors=data.get('errors', 0),
            error_details=[
                ImportErrorDetail(
                    line=d['line'],
                    error=d['error'],
                    field=d.get('field'),
                    value=d.get('value'),
                )
                for d in data.get('errorDetails', [])
            ],
        )


@dataclass
class ImportOutcome:
    """What process_import hands back: a finished result or a pollable job id"""
    mode: str
    result: Optional[ImportResult] = None
    job_id: Optional[str] = None

    @classmethod
    def sync(cls, result: ImportResult) -> 'ImportOutcome':
        return cls(mode='sync', result=result)

    @classmethod
    def queued(cls, job_id: str) -> 'ImportOutcome':
        return cls(mode='async', job_id=job_id)

    @property
    def is_async(self) -> bool:
        return self.mode == 'async'

    def to_dict(self) -> Dict[str, Any]:
        if self.is_async:
            return {'type': 'async', 'jobId': self.job_id}
        return {'type': 'sync', 'result': self.result.to_dict()}
