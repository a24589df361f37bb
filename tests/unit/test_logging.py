import logging
from core.exceptions import TransientNetworkError
from core.logging import ErrorContextFormatter


def make_record(**extra):
    record = logging.LogRecord("ingestion.runner", logging.ERROR, __file__, 1, "Chunk 1 failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_plain_record_is_unchanged():
    formatter = ErrorContextFormatter("%(levelname)s | %(message)s")
    assert formatter.format(make_record()) == "ERROR | Chunk 1 failed"


def test_error_context_is_appended_as_json():
    formatter = ErrorContextFormatter("%(message)s")
    error = TransientNetworkError("timeout", context={"resource": "Media"})

    line = formatter.format(make_record(error_context=error.to_dict()))

    assert line.startswith("Chunk 1 failed | context={")
    assert '"error_type": "TransientNetworkError"' in line
    assert '"resource": "Media"' in line
