"""
Import Validator - Normalizes a raw spreadsheet row into a ParsedContact
"""

import re
from typing import Dict, List, Optional, Tuple

from services.exceptions import ValidationError
from services.import_schemas import ParsedContact, RawRow


EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Canonical field -> accepted column names, in lookup order.
# Portuguese aliases match the headers of the downloadable template.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'name': ('name', 'nome'),
    'email': ('email',),
    'phone': ('phone', 'telefone'),
    'company': ('company', 'empresa'),
    'position': ('position', 'cargo'),
    'city': ('city', 'cidade'),
    'state': ('state', 'estado'),
    'notes': ('notes', 'observacoes', 'obs'),
}

KNOWN_COLUMNS = frozenset(
    alias for aliases in FIELD_ALIASES.values() for alias in aliases
) | {'tags'}


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ImportValidator:
    """Validates one row at a time; stateless and safe to share"""

    def validate(self, row: RawRow) -> ParsedContact:
        """
        Resolve aliases, trim values and enforce the minimum-field rule.

        Raises:
            ValidationError: Invalid email, or neither name nor email present
        """
        values = {}
        for field, aliases in FIELD_ALIASES.items():
            values[field] = self._first_present(row, aliases)

        email = values['email']
        if email is not None and not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email", field='email')

        if values['name'] is None and email is None:
            raise ValidationError("At least name or email must be provided")

        return ParsedContact(
            tags=self.split_tags(row.get('tags')),
            custom_fields=self._extract_custom_fields(row),
            **values,
        )

    @staticmethod
    def split_tags(raw) -> Optional[List[str]]:
        """'vip, lead,,vip' -> ['vip', 'lead', 'vip']"""
        if not isinstance(raw, str):
            return None
        tags = [tag.strip() for tag in raw.split(',')]
        tags = [tag for tag in tags if tag]
        return tags or None

    @staticmethod
    def normalize_phone(phone: Optional[str]) -> Optional[str]:
        """Strip everything but digits"""
        if not phone:
            return None
        return re.sub(r'\D', '', phone)

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if not email:
            return False
        return bool(EMAIL_PATTERN.match(email))

    def _first_present(self, row: RawRow, aliases: Tuple[str, ...]) -> Optional[str]:
        for alias in aliases:
            value = _clean(row.get(alias))
            if value is not None:
                return value
        return None

    def _extract_custom_fields(self, row: RawRow) -> Optional[Dict[str, str]]:
        """Keep unrecognized non-empty columns so no spreadsheet data is lost"""
        extra = {}
        for column, value in row.items():
            if column in KNOWN_COLUMNS:
                continue
            cleaned = _clean(value)
            if cleaned is not None:
                extra[column] = cleaned
        return extra or None
