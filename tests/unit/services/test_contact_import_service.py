"""
Unit tests for ContactImportService
Repositories are mocked; parser and validator are the real ones.
"""

from unittest.mock import Mock, call

import pytest
from sqlalchemy.exc import OperationalError

from repositories.contact_repository import ContactRepository
from repositories.import_job_repository import ImportJobRepository
from repositories.organization_repository import OrganizationRepository
from repositories.tag_repository import TagRepository
from services.contact_import_service import ContactImportService, TAG_COLORS
from services.exceptions import JobNotFound, OrganizationNotFound, PersistenceError, UnsupportedFormat
from services.import_schemas import ImportConfig
from tests.fixtures.import_files import make_csv_rows, make_csv_upload, make_raw_rows


@pytest.fixture
def contact_repository():
    repo = Mock(spec=ContactRepository)
    repo.find_by_organization_and_email.return_value = None
    repo.bulk_insert_ignore_conflicts.side_effect = lambda contacts: len(contacts)
    return repo


@pytest.fixture
def organization_repository():
    repo = Mock(spec=OrganizationRepository)
    repo.exists_by_id.return_value = True
    return repo


@pytest.fixture
def tag_repository():
    return Mock(spec=TagRepository)


@pytest.fixture
def import_job_repository():
    return Mock(spec=ImportJobRepository)


@pytest.fixture
def dispatcher():
    return Mock()


@pytest.fixture
def service(contact_repository, organization_repository, tag_repository,
            import_job_repository, dispatcher):
    return ContactImportService(
        contact_repository=contact_repository,
        organization_repository=organization_repository,
        tag_repository=tag_repository,
        import_job_repository=import_job_repository,
        dispatcher=dispatcher,
    )


def inserted_rows(contact_repository):
    """All contact dicts passed to bulk inserts, in order"""
    rows = []
    for insert_call in contact_repository.bulk_insert_ignore_conflicts.call_args_list:
        rows.extend(insert_call.args[0])
    return rows


class TestProcessImportRouting:
    """Files below the threshold run inline, larger ones are queued"""

    def test_499_rows_are_processed_synchronously(self, service, dispatcher, import_job_repository):
        # Arrange
        upload = make_csv_upload(make_csv_rows(499))

        # Act
        outcome = service.process_import(upload, 'text/csv', user_id=1, organization_id=1)

        # Assert
        assert outcome.is_async is False
        assert outcome.result.total == 499
        assert outcome.result.success == 499
        dispatcher.assert_not_called()
        import_job_repository.create_job.assert_not_called()

    def test_500_rows_are_queued(self, service, dispatcher, import_job_repository, contact_repository):
        upload = make_csv_upload(make_csv_rows(500))

        outcome = service.process_import(upload, 'text/csv', user_id=7, organization_id=1)

        assert outcome.is_async is True
        assert outcome.to_dict() == {'type': 'async', 'jobId': outcome.job_id}
        import_job_repository.create_job.assert_called_once_with(
            job_id=outcome.job_id, organization_id=1, user_id=7, total_rows=500
        )
        dispatcher.assert_called_once()
        job_id, payload = dispatcher.call_args.args
        assert job_id == outcome.job_id
        assert payload['organizationId'] == 1
        assert payload['userId'] == 7
        assert len(payload['rows']) == 500
        assert payload['config'] == ImportConfig().to_dict()
        contact_repository.bulk_insert_ignore_conflicts.assert_not_called()

    def test_queued_job_ids_are_unique(self, service):
        first = service.process_import(make_csv_upload(make_csv_rows(500)), 'text/csv', 1, 1)
        second = service.process_import(make_csv_upload(make_csv_rows(500)), 'text/csv', 1, 1)

        assert first.job_id != second.job_id

    def test_enqueue_failure_removes_job_and_propagates(self, service, dispatcher, import_job_repository):
        # Arrange
        job = Mock()
        import_job_repository.create_job.return_value = job
        dispatcher.side_effect = ConnectionError("broker unreachable")

        # Act & Assert
        with pytest.raises(ConnectionError):
            service.process_import(make_csv_upload(make_csv_rows(500)), 'text/csv', 1, 1)

        import_job_repository.delete.assert_called_once_with(job)
        import_job_repository.commit.assert_called()

    def test_unknown_organization_is_rejected_before_parsing(self, service, organization_repository):
        organization_repository.exists_by_id.return_value = False

        with pytest.raises(OrganizationNotFound):
            service.process_import(make_csv_upload("garbage"), 'application/pdf', 1, 99)

    def test_unsupported_format_propagates(self, service):
        with pytest.raises(UnsupportedFormat):
            service.process_import(make_csv_upload("name\nAna\n"), 'application/pdf', 1, 1)

    def test_column_mapping_is_applied_before_validation(self, service, contact_repository):
        upload = make_csv_upload("Nome Completo,Correio\nAna,ana@x.com\n")
        config = ImportConfig(column_mapping={'Nome Completo': 'name', 'Correio': 'email'})

        outcome = service.process_import(upload, 'text/csv', 1, 1, config)

        assert outcome.result.success == 1
        row = inserted_rows(contact_repository)[0]
        assert row['name'] == 'Ana'
        assert row['email'] == 'ana@x.com'
        assert row['custom_fields'] is None


class TestRunImport:

    def test_mixed_file_counts_each_category_once(self, service, contact_repository):
        """Valid row, empty row and an in-file duplicate of the first row"""
        # Arrange
        rows = [
            {'name': 'Ana', 'email': 'ana@x.com'},
            {'email': ''},
            {'name': 'Bea', 'email': 'ana@x.com'},
        ]

        # Act
        result = service.run_import(rows, 1, ImportConfig(skip_duplicates=True, update_existing=False))

        # Assert
        assert (result.total, result.success, result.duplicates, result.errors) == (3, 1, 1, 1)
        assert [detail.line for detail in result.error_details] == [3]
        assert result.error_details[0].error == "At least name or email must be provided"
        assert [row['name'] for row in inserted_rows(contact_repository)] == ['Ana']

    def test_counts_always_add_up_to_total(self, service, contact_repository):
        contact_repository.find_by_organization_and_email.side_effect = (
            lambda org_id, email: Mock() if email == 'contact3@example.com' else None
        )
        rows = make_raw_rows(10) + [{'email': 'broken'}, {'phone': '123'}]

        result = service.run_import(rows, 1, ImportConfig())

        assert result.success + result.duplicates + result.errors == result.total == 12

    def test_invalid_email_error_detail(self, service):
        result = service.run_import([{'name': 'Ana', 'email': 'not-an-email'}], 1, ImportConfig())

        detail = result.error_details[0]
        assert detail.line == 2
        assert detail.error == "Invalid email"
        assert detail.field == 'email'
        assert detail.value.startswith('{"name":"Ana"')

    def test_error_value_is_truncated(self, service):
        result = service.run_import([{'email': 'x' * 300}], 1, ImportConfig())

        assert len(result.error_details[0].value) == 100

    def test_existing_contact_is_counted_as_duplicate(self, service, contact_repository):
        contact_repository.find_by_organization_and_email.return_value = Mock()

        result = service.run_import([{'name': 'Ana', 'email': 'ana@x.com'}], 1, ImportConfig())

        assert result.duplicates == 1
        assert result.success == 0
        contact_repository.update.assert_not_called()
        contact_repository.bulk_insert_ignore_conflicts.assert_not_called()

    def test_existing_contact_is_updated_when_requested(self, service, contact_repository):
        # Arrange
        existing = Mock(name='existing')
        existing.name = 'Old Name'
        existing.phone = '111'
        contact_repository.find_by_organization_and_email.return_value = existing
        row = {'name': '', 'email': 'ana@x.com', 'phone': '222', 'company': 'Acme'}

        # Act
        result = service.run_import([row], 1, ImportConfig(update_existing=True))

        # Assert
        assert result.success == 1
        assert result.duplicates == 0
        contact_repository.update.assert_called_once_with(
            existing,
            name='Old Name',
            phone='222',
            company='Acme',
            position=None,
            city=None,
            state=None,
            notes=None,
        )
        contact_repository.commit.assert_called()

    def test_in_batch_duplicate_is_merged_when_updating(self, service, contact_repository):
        rows = [
            {'name': 'Ana', 'email': 'ana@x.com', 'company': 'Acme'},
            {'email': 'ana@x.com', 'phone': '555', 'company': 'Globex'},
        ]

        result = service.run_import(rows, 1, ImportConfig(update_existing=True))

        assert result.success == 2
        (row,) = inserted_rows(contact_repository)
        assert (row['name'], row['phone'], row['company']) == ('Ana', '555', 'Globex')

    def test_duplicates_are_not_looked_up_when_skip_disabled(self, service, contact_repository):
        result = service.run_import(make_raw_rows(3), 1, ImportConfig(skip_duplicates=False))

        contact_repository.find_by_organization_and_email.assert_not_called()
        assert result.success == 3

    def test_lookup_failure_is_recorded_as_row_error(self, service, contact_repository):
        contact_repository.find_by_organization_and_email.side_effect = [
            OperationalError('SELECT', {}, Exception('connection lost')),
            None,
        ]

        result = service.run_import(make_raw_rows(2), 1, ImportConfig())

        assert result.errors == 1
        assert result.success == 1
        assert result.error_details[0].line == 2
        contact_repository.rollback.assert_called_once()

    def test_missing_name_gets_placeholder(self, service, contact_repository):
        service.run_import([{'email': 'ana@x.com'}], 1, ImportConfig())

        assert inserted_rows(contact_repository)[0]['name'] == 'Sem nome'

    def test_unknown_columns_become_custom_fields(self, service, contact_repository):
        service.run_import([{'name': 'Ana', 'linkedin': 'in/ana', 'blank': ''}], 1, ImportConfig())

        assert inserted_rows(contact_repository)[0]['custom_fields'] == {'linkedin': 'in/ana'}

    def test_rows_are_inserted_in_batches(self, service, contact_repository):
        service.run_import(make_raw_rows(250), 1, ImportConfig())

        sizes = [len(c.args[0]) for c in contact_repository.bulk_insert_ignore_conflicts.call_args_list]
        assert sizes == [100, 100, 50]

    def test_failed_batch_is_recorded_and_next_batch_continues(self, service, contact_repository):
        # Arrange
        contact_repository.bulk_insert_ignore_conflicts.side_effect = [
            100,
            PersistenceError("deadlock detected"),
            50,
        ]

        # Act
        result = service.run_import(make_raw_rows(250), 1, ImportConfig())

        # Assert
        assert result.success == 150
        assert result.errors == 100
        assert len(result.error_details) == 1
        assert result.error_details[0].line == 100
        assert result.error_details[0].error == "Batch insert failed: deadlock detected"
        assert result.inserted == 150

    def test_progress_is_reported_per_batch(self, service):
        progress = []

        service.run_import(make_raw_rows(250), 1, ImportConfig(), progress_callback=progress.append)

        assert progress == [40, 80, 100]

    def test_counter_increments_by_inserted_rows_only(self, service, contact_repository,
                                                      organization_repository):
        # Two of the five valid rows lose the race to a concurrent import
        contact_repository.bulk_insert_ignore_conflicts.side_effect = lambda contacts: len(contacts) - 2
        contact_repository.find_by_organization_and_email.side_effect = (
            lambda org_id, email: Mock() if email == 'contact0@example.com' else None
        )
        rows = make_raw_rows(6) + [{'email': 'bad'}]

        result = service.run_import(rows, 1, ImportConfig())

        organization_repository.increment_contact_count.assert_called_once_with(1, 3)
        assert result.inserted == 3

    def test_counter_includes_committed_batches_when_run_aborts(self, service, organization_repository):
        # Arrange
        progress_callback = Mock(side_effect=[None, RuntimeError('broker gone')])

        # Act
        with pytest.raises(RuntimeError, match='broker gone'):
            service.run_import(make_raw_rows(250), 1, ImportConfig(), progress_callback=progress_callback)

        # Assert
        organization_repository.increment_contact_count.assert_called_once_with(1, 200)

    def test_counter_untouched_when_nothing_inserted(self, service, contact_repository,
                                                     organization_repository):
        contact_repository.find_by_organization_and_email.return_value = Mock()

        service.run_import(make_raw_rows(3), 1, ImportConfig())

        organization_repository.increment_contact_count.assert_not_called()

    def test_tags_are_created_once_each(self, service, tag_repository):
        rows = [
            {'name': 'Ana', 'tags': 'vip, lead'},
            {'name': 'Bea', 'tags': 'lead,,vip '},
        ]

        service.run_import(rows, 1, ImportConfig())

        calls = tag_repository.upsert_by_organization_and_name.call_args_list
        assert [(c.args[0], c.args[1]) for c in calls] == [(1, 'lead'), (1, 'vip')]
        assert all(c.args[2] in TAG_COLORS for c in calls)

    def test_tags_are_skipped_when_disabled(self, service, tag_repository):
        service.run_import([{'name': 'Ana', 'tags': 'vip'}], 1, ImportConfig(create_tags=False))

        tag_repository.upsert_by_organization_and_name.assert_not_called()

    def test_tag_failure_does_not_fail_import(self, service, tag_repository):
        tag_repository.upsert_by_organization_and_name.side_effect = [
            OperationalError('INSERT', {}, Exception('locked')),
            True,
        ]

        result = service.run_import([{'name': 'Ana', 'tags': 'a,b'}], 1, ImportConfig())

        assert result.success == 1
        assert tag_repository.upsert_by_organization_and_name.call_count == 2

    def test_empty_file_returns_zero_counts(self, service, contact_repository):
        result = service.run_import([], 1, ImportConfig())

        assert result.to_dict() == {
            'total': 0, 'success': 0, 'duplicates': 0, 'errors': 0, 'errorDetails': [],
        }
        contact_repository.bulk_insert_ignore_conflicts.assert_not_called()


class TestGetJobStatus:

    def test_completed_job_includes_result(self, service, import_job_repository):
        job = Mock(organization_id=1, status='completed', progress=100,
                   result={'total': 1}, error=None)
        import_job_repository.get_by_id.return_value = job

        status = service.get_job_status('job-1', organization_id=1)

        assert status == {'status': 'completed', 'progress': 100, 'result': {'total': 1}}

    def test_failed_job_includes_error(self, service, import_job_repository):
        job = Mock(organization_id=1, status='failed', progress=40, result=None, error='boom')
        import_job_repository.get_by_id.return_value = job

        status = service.get_job_status('job-1')

        assert status == {'status': 'failed', 'progress': 40, 'error': 'boom'}

    def test_unknown_job_raises(self, service, import_job_repository):
        import_job_repository.get_by_id.return_value = None

        with pytest.raises(JobNotFound):
            service.get_job_status('missing')

    def test_job_of_another_organization_is_hidden(self, service, import_job_repository):
        import_job_repository.get_by_id.return_value = Mock(organization_id=2)

        with pytest.raises(JobNotFound):
            service.get_job_status('job-1', organization_id=1)


class TestCeleryDispatch:

    def test_default_dispatcher_sends_task_to_import_queue(self, contact_repository,
                                                          organization_repository,
                                                          tag_repository,
                                                          import_job_repository,
                                                          mocker):
        # Arrange
        apply_async = mocker.patch('tasks.contact_import_tasks.process_contact_import.apply_async')
        service = ContactImportService(contact_repository, organization_repository,
                                       tag_repository, import_job_repository,
                                       queue_name='contact_import')

        # Act
        outcome = service.process_import(make_csv_upload(make_csv_rows(500)), 'text/csv', 1, 1)

        # Assert
        assert apply_async.call_args == call(
            args=[outcome.job_id, mocker.ANY],
            task_id=outcome.job_id,
            queue='contact_import',
        )
