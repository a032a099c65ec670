import logging

from idp import telemetry


def test_setup_logging_runs_once_without_touching_root(settings):
    telemetry.setup_logging(settings)
    handlers = list(logging.getLogger().handlers)
    telemetry.setup_logging(settings.model_copy(update={"log_level": "DEBUG"}))
    assert telemetry._logging_configured
    assert logging.getLogger().handlers == handlers
    assert not hasattr(logging.getLogger(), "_idp_configured")


def test_redact_keeps_only_a_prefix():
    assert telemetry.redact("abcdefghijklmnop") == "abcdefgh..."
    assert telemetry.redact("") == "<none>"
    assert telemetry.redact(None) == "<none>"
