import logging

from cristae_density.logger import attach_handler, detach_handler, get_logger, log_to_file, set_level


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_child_logger_names() -> None:
    assert get_logger("cristae_density.batch").name == "cristae_density.batch"
    assert get_logger("batch").name == "cristae_density.batch"


def test_region_field_filled() -> None:
    handler = _ListHandler()
    attach_handler(handler)
    try:
        log = get_logger("test_logger")
        log.info("plain")
        log.info("scoped", extra={"region": "M4"})
    finally:
        detach_handler(handler)
    assert [r.region for r in handler.records] == ["-", "M4"]


def test_log_to_file(tmp_path) -> None:
    handler = log_to_file(tmp_path / "logs" / "run.log")
    try:
        get_logger("test_logger").warning("written", extra={"region": "M9"})
    finally:
        detach_handler(handler)
    text = (tmp_path / "logs" / "run.log").read_text(encoding="utf-8")
    assert "region=M9: written" in text
    assert "[WARNING]" in text


def test_set_level_updates_children() -> None:
    log = get_logger("test_logger")
    set_level(logging.DEBUG)
    try:
        assert log.level == logging.DEBUG
        assert logging.getLogger("cristae_density").level == logging.DEBUG
    finally:
        set_level(logging.INFO)
