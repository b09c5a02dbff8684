"""
Tests for error recording and summaries
"""
from vip.utils.error_handler import ErrorHandler, ErrorKind, FieldParseError


class TestErrorHandler:

    def test_records_bounded_counters_complete(self):
        handler = ErrorHandler(max_records=10)

        for i in range(500):
            handler.handle_error(FieldParseError(f"Malformed cwe skipped: CWE-{i}", field='cwe'))

        summary = handler.get_error_summary()
        assert len(handler.error_records) == 10
        assert summary['retained_records'] == 10
        assert summary['total_errors'] == 500
        assert summary['errors_by_kind'] == {ErrorKind.FIELD_PARSE.value: 500}
        assert handler.error_records[-1].message == "Malformed cwe skipped: CWE-499"

    def test_clear_errors(self):
        handler = ErrorHandler(max_records=10)
        handler.handle_error(FieldParseError("Malformed description skipped", field='description'))

        handler.clear_errors()

        assert handler.get_error_summary()['total_errors'] == 0
        assert len(handler.error_records) == 0
