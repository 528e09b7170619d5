"""
Tests for ImportParser: CSV and xlsx decoding, column mapping and header extraction.
"""

import pytest

from services.exceptions import UnsupportedFormat, UnreadableFile
from services.import_parser import ImportParser, normalize_content_type
from tests.fixtures.import_files import (
    XLSX_CONTENT_TYPE,
    make_csv_upload,
    make_xlsx_bytes,
    make_xlsx_upload,
)


@pytest.fixture
def parser():
    return ImportParser()


class TestCsvParsing:
    """CSV uploads become dict rows in file order"""

    def test_parses_rows_in_file_order(self, parser):
        # Arrange
        upload = make_csv_upload("name,email\nAna,ana@x.com\nBruno,bruno@x.com\n")

        # Act
        rows = parser.parse(upload, 'text/csv')

        # Assert
        assert rows == [
            {'name': 'Ana', 'email': 'ana@x.com'},
            {'name': 'Bruno', 'email': 'bruno@x.com'},
        ]

    def test_strips_utf8_bom_from_first_header(self, parser):
        upload = make_csv_upload('\ufeffname,email\nAna,ana@x.com\n')

        rows = parser.parse(upload, 'text/csv')

        assert rows[0]['name'] == 'Ana'

    def test_legacy_excel_mime_is_read_as_csv(self, parser):
        upload = make_csv_upload("nome,email\nCarla,carla@x.com\n", content_type='application/vnd.ms-excel')

        rows = parser.parse(upload, 'application/vnd.ms-excel')

        assert rows == [{'nome': 'Carla', 'email': 'carla@x.com'}]

    def test_content_type_parameters_are_ignored(self, parser):
        upload = make_csv_upload("name\nAna\n")

        rows = parser.parse(upload, 'text/csv; charset=utf-8')

        assert rows == [{'name': 'Ana'}]

    def test_blank_lines_are_skipped(self, parser):
        upload = make_csv_upload("name,email\nAna,ana@x.com\n\nBruno,\n")

        rows = parser.parse(upload, 'text/csv')

        assert [row['name'] for row in rows] == ['Ana', 'Bruno']

    def test_separator_only_line_is_kept_as_empty_row(self, parser):
        upload = make_csv_upload("name,email\nAna,ana@x.com\n,\nBruno,\n")

        rows = parser.parse(upload, 'text/csv')

        assert rows == [
            {'name': 'Ana', 'email': 'ana@x.com'},
            {'name': '', 'email': ''},
            {'name': 'Bruno', 'email': ''},
        ]

    def test_short_rows_have_missing_columns_as_none(self, parser):
        upload = make_csv_upload("name,email,phone\nAna,ana@x.com\n")

        rows = parser.parse(upload, 'text/csv')

        assert rows[0]['phone'] is None

    def test_quoted_commas_stay_in_one_field(self, parser):
        upload = make_csv_upload('name,tags\nAna,"vip, lead"\n')

        rows = parser.parse(upload, 'text/csv')

        assert rows[0]['tags'] == 'vip, lead'

    def test_accepts_raw_bytes(self, parser):
        rows = parser.parse(b"name\nAna\n", 'text/csv')

        assert rows == [{'name': 'Ana'}]

    def test_invalid_utf8_raises_unreadable_file(self, parser):
        upload = make_csv_upload(b"name\n\xff\xfe\xfa\n")

        with pytest.raises(UnreadableFile):
            parser.parse(upload, 'text/csv')

    def test_header_only_file_has_no_rows(self, parser):
        rows = parser.parse(make_csv_upload("name,email\n"), 'text/csv')

        assert rows == []


class TestXlsxParsing:
    """Workbook uploads: first sheet, first row is the header"""

    def test_parses_first_sheet(self, parser):
        upload = make_xlsx_upload([
            ['name', 'email', 'phone'],
            ['Ana', 'ana@x.com', 11999990000],
            ['Bruno', None, '555-1234'],
        ])

        rows = parser.parse(upload, XLSX_CONTENT_TYPE)

        assert rows == [
            {'name': 'Ana', 'email': 'ana@x.com', 'phone': '11999990000'},
            {'name': 'Bruno', 'phone': '555-1234'},
        ]

    def test_integral_floats_render_without_decimal(self, parser):
        upload = make_xlsx_upload([['name', 'phone'], ['Ana', 11999990000.0]])

        rows = parser.parse(upload, XLSX_CONTENT_TYPE)

        assert rows[0]['phone'] == '11999990000'

    def test_empty_rows_are_skipped(self, parser):
        upload = make_xlsx_upload([['name'], ['Ana'], [None], ['Bruno']])

        rows = parser.parse(upload, XLSX_CONTENT_TYPE)

        assert [row['name'] for row in rows] == ['Ana', 'Bruno']

    def test_corrupt_workbook_raises_unreadable_file(self, parser):
        upload = make_csv_upload(b"definitely not a zip archive", content_type=XLSX_CONTENT_TYPE)

        with pytest.raises(UnreadableFile):
            parser.parse(upload, XLSX_CONTENT_TYPE)


class TestUnsupportedFormats:

    @pytest.mark.parametrize('content_type', ['application/pdf', 'text/plain', None, ''])
    def test_parse_rejects_unsupported_types(self, parser, content_type):
        with pytest.raises(UnsupportedFormat):
            parser.parse(make_csv_upload("name\nAna\n"), content_type)

    def test_extract_columns_rejects_unsupported_types(self, parser):
        with pytest.raises(UnsupportedFormat):
            parser.extract_columns(make_csv_upload("name\nAna\n"), 'application/json')


class TestColumnMapping:

    def test_empty_mapping_returns_rows_unchanged(self, parser):
        upload = make_csv_upload("Nome Completo,E-mail\nAna,ana@x.com\n")

        rows = parser.parse(upload, 'text/csv', {})

        assert rows == [{'Nome Completo': 'Ana', 'E-mail': 'ana@x.com'}]

    def test_mapping_renames_and_drops_unmapped_columns(self, parser):
        upload = make_csv_upload("Nome Completo,E-mail,Extra\nAna,ana@x.com,ignored\n")

        rows = parser.parse(upload, 'text/csv', {'Nome Completo': 'name', 'E-mail': 'email'})

        assert rows == [{'name': 'Ana', 'email': 'ana@x.com'}]

    def test_mapping_skips_columns_missing_from_row(self):
        row = {'Nome': 'Ana'}

        mapped = ImportParser.apply_column_mapping(row, {'Nome': 'name', 'Telefone': 'phone'})

        assert mapped == {'name': 'Ana'}

    def test_mapping_keeps_empty_strings_but_not_none(self):
        row = {'A': '', 'B': None}

        mapped = ImportParser.apply_column_mapping(row, {'A': 'name', 'B': 'email'})

        assert mapped == {'name': ''}


class TestExtractColumns:

    def test_csv_header(self, parser):
        upload = make_csv_upload("Nome,E-mail,Telefone\nAna,ana@x.com,1\n")

        assert parser.extract_columns(upload, 'text/csv') == ['Nome', 'E-mail', 'Telefone']

    def test_xlsx_header(self, parser):
        content = make_xlsx_bytes([['Nome', 'E-mail'], ['Ana', 'ana@x.com']])

        assert parser.extract_columns(content, XLSX_CONTENT_TYPE) == ['Nome', 'E-mail']

    def test_empty_csv_has_no_columns(self, parser):
        assert parser.extract_columns(make_csv_upload(""), 'text/csv') == []

    def test_upload_can_be_reparsed_after_extracting_columns(self, parser):
        upload = make_csv_upload("name\nAna\n")

        parser.extract_columns(upload, 'text/csv')
        rows = parser.parse(upload, 'text/csv')

        assert rows == [{'name': 'Ana'}]


def test_normalize_content_type():
    assert normalize_content_type('Text/CSV; charset=UTF-8') == 'text/csv'
    assert normalize_content_type(None) == ''
