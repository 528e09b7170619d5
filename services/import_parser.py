"""
Import Parser - Turns an uploaded spreadsheet into ordered raw rows

CSV uploads are decoded as UTF-8 and read with the csv module; .xlsx
workbooks are read with openpyxl. Only the first worksheet is imported.
"""

import csv
import io
import logging
import zipfile
from typing import Dict, List, Optional, Union

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from werkzeug.datastructures import FileStorage

from services.exceptions import UnsupportedFormat, UnreadableFile
from services.import_schemas import RawRow

logger = logging.getLogger(__name__)


CSV_CONTENT_TYPES = frozenset({
    'text/csv',
    # Browsers on Windows commonly label .csv uploads with the legacy Excel type
    'application/vnd.ms-excel',
})
XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
SUPPORTED_CONTENT_TYPES = CSV_CONTENT_TYPES | {XLSX_CONTENT_TYPE}


def normalize_content_type(content_type: Optional[str]) -> str:
    """Strip parameters such as '; charset=utf-8' and lowercase"""
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


class ImportParser:
    """Parses CSV and Excel uploads into lists of column -> value dicts"""

    def parse(self, file: Union[FileStorage, bytes], content_type: Optional[str],
              column_mapping: Optional[Dict[str, str]] = None) -> List[RawRow]:
        """
        Parse an uploaded file into rows in file order.

        Args:
            file: Uploaded file (or its raw bytes)
            content_type: MIME type declared by the client
            column_mapping: Optional source column -> canonical field mapping

        Returns:
            List of raw rows, mapped when a mapping is given

        Raises:
            UnsupportedFormat: Content type is neither CSV nor xlsx
            UnreadableFile: Content could not be decoded
        """
        kind = normalize_content_type(content_type)
        if kind not in SUPPORTED_CONTENT_TYPES:
            raise UnsupportedFormat(content_type)

        content = self._read_bytes(file)

        if kind in CSV_CONTENT_TYPES:
            rows = self._parse_csv(content)
        else:
            rows = self._parse_xlsx(content)

        logger.debug(f"Parsed {len(rows)} rows from {kind} upload")

        if column_mapping:
            rows = [self.apply_column_mapping(row, column_mapping) for row in rows]
        return rows

    def extract_columns(self, file: Union[FileStorage, bytes], content_type: Optional[str]) -> List[str]:
        """Return just the header row so the client can build a column mapping"""
        kind = normalize_content_type(content_type)
        if kind not in SUPPORTED_CONTENT_TYPES:
            raise UnsupportedFormat(content_type)

        content = self._read_bytes(file)

        if kind in CSV_CONTENT_TYPES:
            reader = csv.reader(io.StringIO(self._decode(content)))
            try:
                header = next(reader, [])
            except csv.Error as e:
                raise UnreadableFile(f"Could not read CSV header: {e}")
            return [column.strip() for column in header if column.strip()]

        workbook = self._open_workbook(content)
        try:
            sheet = workbook.worksheets[0]
            sheet.reset_dimensions()
            for values in sheet.iter_rows(min_row=1, max_row=1, values_only=True):
                return [self._cell_to_str(v) for v in values if self._cell_to_str(v)]
            return []
        finally:
            workbook.close()

    @staticmethod
    def apply_column_mapping(row: RawRow, mapping: Dict[str, str]) -> RawRow:
        """
        Keep only mapped columns, renamed to their canonical field.

        An empty mapping returns the row untouched.
        """
        if not mapping:
            return row

        mapped = {}
        for source, target in mapping.items():
            if row.get(source) is not None:
                mapped[target] = row[source]
        return mapped

    def _read_bytes(self, file: Union[FileStorage, bytes]) -> bytes:
        if isinstance(file, (bytes, bytearray)):
            return bytes(file)
        file.seek(0)
        content = file.read()
        file.seek(0)
        if isinstance(content, str):
            content = content.encode('utf-8')
        return content

    def _decode(self, content: bytes) -> str:
        try:
            # utf-8-sig drops the BOM that Excel writes on "CSV UTF-8" exports
            return content.decode('utf-8-sig')
        except UnicodeDecodeError as e:
            raise UnreadableFile(f"CSV file is not valid UTF-8: {e.reason}")

    def _parse_csv(self, content: bytes) -> List[RawRow]:
        text = self._decode(content)
        reader = csv.DictReader(io.StringIO(text), restval=None)

        rows = []
        try:
            for record in reader:
                # Values past the header end up under the None key
                record.pop(None, None)
                # A line of bare separators stays a row so later line numbers match the file
                rows.append({key.strip(): value for key, value in record.items() if key and key.strip()})
        except csv.Error as e:
            raise UnreadableFile(f"Malformed CSV at line {reader.line_num}: {e}")
        return rows

    def _open_workbook(self, content: bytes):
        try:
            return load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
            raise UnreadableFile(f"Could not open Excel workbook: {e}")

    def _parse_xlsx(self, content: bytes) -> List[RawRow]:
        workbook = self._open_workbook(content)
        try:
            if not workbook.worksheets:
                return []
            sheet = workbook.worksheets[0]
            # Exported workbooks often carry stale dimension metadata
            sheet.reset_dimensions()
            values_iter = sheet.iter_rows(values_only=True)

            header_values = next(values_iter, None)
            if header_values is None:
                return []
            headers = [self._cell_to_str(v) for v in header_values]

            rows = []
            for values in values_iter:
                row = {}
                for header, value in zip(headers, values):
                    if not header:
                        continue
                    cell = self._cell_to_str(value)
                    if cell is not None:
                        row[header] = cell
                if row:
                    rows.append(row)
            return rows
        finally:
            workbook.close()

    @staticmethod
    def _cell_to_str(value) -> Optional[str]:
        """Workbook cells come back typed; rows carry text only"""
        if value is None:
            return None
        if isinstance(value, bool):
            return 'true' if value else 'false'
        if isinstance(value, float) and value.is_integer():
            # Phone numbers typed into Excel arrive as 11999990000.0
            return str(int(value))
        if hasattr(value, 'isoformat'):
            return value.isoformat()
        text = str(value).strip()
        return text or None
