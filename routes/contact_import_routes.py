"""
Contact import API - upload, job polling, column preview and template download
"""

import csv
import io

from flask import Blueprint, request, current_app, jsonify, make_response
from auth_utils import login_required, current_user
from logging_config import get_logger
from services.exceptions import (
    ContactImportError,
    InvalidImportConfig,
    JobNotFound,
    OrganizationNotFound,
    UnreadableFile,
    UnsupportedFormat,
)
from services.import_parser import SUPPORTED_CONTENT_TYPES, normalize_content_type
from services.import_schemas import ImportConfig

logger = get_logger(__name__)

contact_import_bp = Blueprint('contact_import', __name__)

TEMPLATE_HEADERS = ['name', 'email', 'phone', 'company', 'position', 'city', 'state', 'notes', 'tags']
TEMPLATE_EXAMPLE_ROW = [
    'Maria Silva', 'maria@example.com', '11999990000', 'Acme', 'Gerente',
    'São Paulo', 'SP', 'Cliente desde 2023', 'vip,lead',
]


def _uploaded_file():
    """
    Fetch and check the multipart upload.

    Returns:
        (file, content_type, error_response) - error_response is None when valid
    """
    file = request.files.get('file')
    if file is None or file.filename == '':
        return None, None, (jsonify({'error': 'No file uploaded'}), 400)

    content_type = normalize_content_type(file.mimetype)
    if content_type not in SUPPORTED_CONTENT_TYPES:
        return None, None, (jsonify({
            'error': 'Unsupported file format',
            'message': 'Use CSV or Excel (.xlsx) files',
        }), 400)

    max_size = current_app.config['IMPORT_MAX_FILE_SIZE']
    file.stream.seek(0, io.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    if size > max_size:
        return None, None, (jsonify({
            'error': 'File too large',
            'message': f'Maximum size is {max_size // (1024 * 1024)}MB',
        }), 400)

    return file, content_type, None


@contact_import_bp.route('/import', methods=['POST'])
@login_required
def import_contacts():
    """Upload a spreadsheet and import it (inline or as a background job)"""
    file, content_type, error_response = _uploaded_file()
    if error_response:
        return error_response

    try:
        config = ImportConfig.from_form(request.form)
    except InvalidImportConfig as e:
        return jsonify({'error': 'Invalid import configuration', 'message': str(e)}), 400

    import_service = current_app.services.get('contact_import')

    try:
        outcome = import_service.process_import(
            file=file,
            content_type=content_type,
            user_id=current_user.id,
            organization_id=current_user.organization_id,
            config=config,
        )
        return jsonify(outcome.to_dict())
    except (UnsupportedFormat, UnreadableFile) as e:
        return jsonify({'error': 'Could not read file', 'message': str(e)}), 400
    except OrganizationNotFound as e:
        return jsonify({'error': 'Organization not found', 'message': str(e)}), 404
    except Exception as e:
        logger.exception("Error processing contact import")
        return jsonify({'error': 'Error processing import', 'message': str(e)}), 500


@contact_import_bp.route('/import/<job_id>/status', methods=['GET'])
@login_required
def import_status(job_id):
    """Poll a background import"""
    import_service = current_app.services.get('contact_import')

    try:
        status = import_service.get_job_status(job_id, organization_id=current_user.organization_id)
        return jsonify(status)
    except JobNotFound as e:
        return jsonify({'error': 'Job not found', 'message': str(e)}), 404


@contact_import_bp.route('/import/columns', methods=['POST'])
@login_required
def import_columns():
    """Return the uploaded file's header row for building a column mapping"""
    file, content_type, error_response = _uploaded_file()
    if error_response:
        return error_response

    parser = current_app.services.get('import_parser')
    try:
        columns = parser.extract_columns(file, content_type)
    except ContactImportError as e:
        return jsonify({'error': 'Could not read file', 'message': str(e)}), 400

    return jsonify({'columns': columns})


@contact_import_bp.route('/import/template', methods=['GET'])
def download_template():
    """CSV template with the canonical column headers (no auth required)"""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerow(TEMPLATE_EXAMPLE_ROW)

    response = make_response(buffer.getvalue())
    response.headers['Content-Type'] = 'text/csv; charset=utf-8'
    response.headers['Content-Disposition'] = 'attachment; filename="contacts-template.csv"'
    return response
