"""
Tests for structured log formatting.
"""

import json
import logging

import structlog

from privacy_advisor import __version__
from privacy_advisor.core.logging_config import build_formatter, job_context


def make_record(message: str) -> logging.LogRecord:
    return logging.LogRecord('privacy_advisor.services.job_runner', logging.INFO, __file__, 10, message, None, None)


def test_stdlib_record_carries_job_context():
    formatter = build_formatter(json_logs=True)

    with job_context('job-1', 'scan.site', 2):
        line = json.loads(formatter.format(make_record("Running job job-1")))

    assert line['event'] == "Running job job-1"
    assert line['level'] == 'info'
    assert line['logger'] == 'privacy_advisor.services.job_runner'
    assert (line['job_id'], line['queue'], line['attempt']) == ('job-1', 'scan.site', 2)
    assert (line['app'], line['version']) == ('privacy-advisor', __version__)


def test_context_cleared_after_job():
    formatter = build_formatter(json_logs=True)

    try:
        with job_context('job-1', 'scan.site', 1):
            raise RuntimeError("navigation timeout")
    except RuntimeError:
        pass

    line = json.loads(formatter.format(make_record("idle")))
    assert 'job_id' not in line
    assert structlog.contextvars.get_contextvars() == {}
