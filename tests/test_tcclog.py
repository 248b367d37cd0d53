import gzip
import logging
from pathlib import Path

from sharddoc.tcc.tcclog import (
    LogOptions,
    debugf,
    errorf,
    fatalf,
    get_default_logger,
    infof,
    new_logger,
    warnf,
)


def _flush(logger):
    for handler in logger.handlers:
        handler.flush()


def _contents(logger):
    _flush(logger)
    return Path(logger.handlers[0].baseFilename).read_text(encoding="utf-8")


def test_default_options():
    options = LogOptions()
    assert options.log_name == "app"
    assert options.log_level == "info"
    assert options.file_name == "app.log"
    assert (options.max_age, options.max_size, options.max_backups) == (10, 100, 3)
    assert options.compress is True


def test_customer_logger_writes_file(tmp_path):
    path = tmp_path / "gotcc.log"
    logger = new_logger(LogOptions(file_name=str(path), log_level="info"))
    logger.info("test customer logger running...")
    text = _contents(logger)
    assert "test customer logger running..." in text
    assert "\tINFO\t" in text


def test_info_level_filters_debug(tmp_path):
    logger = new_logger(LogOptions(file_name=str(tmp_path / "a.log"), log_level="info"))
    logger.debug("debug...")
    logger.info("info...")
    text = _contents(logger)
    assert "info..." in text
    assert "debug..." not in text


def test_empty_level_enables_debug(tmp_path):
    logger = new_logger(LogOptions(file_name=str(tmp_path / "b.log"), log_level=""))
    assert logger.isEnabledFor(logging.DEBUG)


def test_unknown_level_falls_back_to_info(tmp_path):
    logger = new_logger(LogOptions(file_name=str(tmp_path / "c.log"), log_level="nonsense"))
    assert not logger.isEnabledFor(logging.DEBUG)
    assert logger.isEnabledFor(logging.INFO)


def test_warn_level_name(tmp_path):
    logger = new_logger(LogOptions(file_name=str(tmp_path / "d.log")))
    logger.warning("warn...")
    assert "\tWARN\t" in _contents(logger)


def test_compressed_rotation(tmp_path):
    path = tmp_path / "e.log"
    logger = new_logger(LogOptions(file_name=str(path), compress=True))
    handler = logger.handlers[0]
    assert Path(handler.baseFilename).name == "e.log"
    logger.info("first entry")
    _flush(logger)
    handler.doRollover()
    rotated = tmp_path / "e.log.1.gz"
    assert rotated.exists()
    with gzip.open(rotated, "rt", encoding="utf-8") as fh:
        assert "first entry" in fh.read()
    logger.info("second entry")
    text = _contents(logger)
    assert "second entry" in text
    assert "first entry" not in text


def test_default_logger_functions(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    logger = get_default_logger()
    assert get_default_logger() is logger
    debugf("debug... now: %s", "d")
    infof("info... now: %s", "i")
    warnf("warn... now: %s", "w")
    errorf("error... now: %s", "e")
    fatalf("fatal... now: %s", "f")
    text = _contents(logger)
    assert "info... now: i" in text
    assert "warn... now: w" in text
    assert "error... now: e" in text
    assert "fatal... now: f" in text
    assert "debug... now: d" not in text