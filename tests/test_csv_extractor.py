import csv
import io
from datetime import date

import pytest

from app.services.csv_extractor import (
    TEMPLATE_EXAMPLE_ROW,
    TEMPLATE_HEADERS,
    build_csv_template,
    parse_csv,
    parse_csv_records,
    resolve_columns,
    tokenize_csv,
)
from app.services.ingest_errors import ParseError

TODAY = date(2025, 3, 1)


def test_quoted_field_keeps_commas_newlines_and_escaped_quotes():
    original = 'He said "hi",\nline2'
    text = 'email,body\njane@x.com,"He said ""hi"",\nline2"\n'

    records = parse_csv_records(text, today=TODAY)

    assert len(records) == 1
    assert records[0].body == original


def test_tokenizer_handles_crlf_inside_and_outside_quotes():
    rows = tokenize_csv('a,b\r\n"x\r\ny",z\r\n')
    assert rows == [["a", "b"], ["x\r\ny", "z"]]


def test_tokenizer_treats_lone_carriage_return_as_row_break():
    assert tokenize_csv("a,b\rc,d") == [["a", "b"], ["c", "d"]]


def test_unbalanced_quote_terminates_and_flushes():
    rows = tokenize_csv('email,body\njane@x.com,"never closed, still here')
    assert rows[-1] == ["jane@x.com", "never closed, still here"]


def test_ragged_row_is_padded_with_empty_strings():
    text = "email,subject,notes\njane@x.com\n"

    result = parse_csv(text, today=TODAY)

    record = result.records[0]
    assert record.email == "jane@x.com"
    assert record.subject is None
    assert record.notes is None


def test_headers_resolved_by_substring():
    columns = resolve_columns(["First Name", "Last Name", "Work Email", "Date Sent", "Email Subject", "Body", "Platform", "Notes"])
    assert columns.first_name == 0
    assert columns.last_name == 1
    assert columns.email == 2
    assert columns.sent_date == 3
    assert columns.subject == 4
    assert columns.body == 5
    assert columns.platform == 6
    assert columns.notes == 7


def test_missing_email_column_raises():
    with pytest.raises(ParseError, match="missing email column"):
        parse_csv("name,subject\nJane,Hello\n")


@pytest.mark.parametrize("text", ["", "email\n", "   \n\n"])
def test_too_few_rows_raises(text):
    with pytest.raises(ParseError, match="too few rows"):
        parse_csv(text)


def test_rows_without_usable_email_are_skipped():
    text = "email,subject\njane@x.com,One\nnot-an-email,Two\n,Three\nbob@y.com,Four\n"

    result = parse_csv(text, today=TODAY)

    assert [r.email for r in result.records] == ["jane@x.com", "bob@y.com"]
    assert [(s.row_number, s.email) for s in result.skipped] == [(2, "not-an-email"), (3, "")]
    assert result.row_numbers == [1, 4]


def test_dates_normalized_and_default_to_today():
    text = "email,date\na@x.com,3/4/2025\nb@x.com,March 5, 2025\nc@x.com,someday\nd@x.com,\n"
    # "March 5, 2025" contains a comma, so it must be quoted to stay one field
    text = text.replace("March 5, 2025", '"March 5, 2025"')

    records = parse_csv_records(text, today=TODAY)

    assert [r.sent_date for r in records] == ["2025-03-04", "2025-03-05", "2025-03-01", "2025-03-01"]


def test_platform_defaults_to_manual():
    records = parse_csv_records("email,platform\na@x.com,\nb@x.com,gmail\n", today=TODAY)
    assert [r.platform for r in records] == ["manual", "gmail"]


def test_reparse_is_idempotent():
    text = 'first name,email,body\nJane,jane@x.com,"multi\nline"\nBob,bob@y.com,short\n'
    assert parse_csv(text, today=TODAY) == parse_csv(text, today=TODAY)


def test_template_round_trip():
    template = build_csv_template()

    assert template.splitlines()[0] == ",".join(TEMPLATE_HEADERS)
    assert template.splitlines()[0] == "first name,last name,email,date of email,subject,body"

    records = parse_csv_records(template)

    assert len(records) == 1
    record = records[0]
    assert record.email == "john.doe@example.com"
    assert record.first_name == "John"
    assert record.last_name == "Doe"
    assert record.sent_date == "2025-01-15"
    assert "\n" in record.body


def test_template_is_standard_csv():
    rows = list(csv.reader(io.StringIO(build_csv_template())))

    assert rows[0] == TEMPLATE_HEADERS
    assert rows[1] == TEMPLATE_EXAMPLE_ROW
    assert tokenize_csv(build_csv_template()) == rows
