import logging

from tcs.logger import DATA_LOGGER_NAME, LOGGER_NAME, configure_logging, format_chunk
from tcs.model import ProxyConfiguration, RemoteEndpoint


def test_format_chunk_hex():
    assert format_chunk("Client => Remote", b"PING") == "Client => Remote [4 bytes]: 50 49 4E 47"


def test_format_chunk_wraps_every_16_bytes():
    text = format_chunk("Remote => Client", bytes(range(20)))
    first, second = text.split("\n")
    assert first.endswith("00 01 02 03 04 05 06 07 08 09 0A 0B 0C 0D 0E 0F")
    assert second.strip() == "10 11 12 13"
    assert second.index("10") == first.index("00")


def test_format_chunk_without_payload():
    text = format_chunk("Client => Remote", b"secret", log_payload=False)
    assert "[6 bytes]" in text
    assert "73" not in text
    assert "payload logging disabled" in text


def test_log_error_keeps_stack(log, caplog):
    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        log.error("Unexpected", e)

    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert "boom" in record.getMessage()
    assert record.exc_info is not None


def test_log_data_goes_to_data_logger(log, caplog):
    log.data("Client => Remote", memoryview(b"\xff\x00"))
    record = caplog.records[-1]
    assert record.name == DATA_LOGGER_NAME
    assert "FF 00" in record.getMessage()


def test_configure_logging_writes_files(tmp_path, monkeypatch, restore_handlers):
    monkeypatch.chdir(tmp_path)
    config = ProxyConfiguration(
        [RemoteEndpoint("10.1.2.3", 4545)],
        enable_file_logging=True,
        separate_data_logs=True,
    )

    log = configure_logging(config, console=False)
    log.info("hello from the relay")
    log.data("Client => Remote", b"AT\r\n")
    for handler in logging.getLogger(LOGGER_NAME).handlers + logging.getLogger(DATA_LOGGER_NAME).handlers:
        handler.flush()

    main_log = (tmp_path / "logs" / "tcs_10-1-2-3_4545.log").read_text()
    data_log = (tmp_path / "logs" / "tcs_data_10-1-2-3_4545.log").read_text()

    assert "log started" in main_log
    assert "hello from the relay" in main_log
    assert "41 54 0D 0A" in data_log
    assert "hello from the relay" not in data_log
    assert "41 54 0D 0A" in main_log


def test_configure_logging_without_files(tmp_path, monkeypatch, restore_handlers):
    monkeypatch.chdir(tmp_path)
    configure_logging(ProxyConfiguration(enable_file_logging=False), console=False)
    assert not (tmp_path / "logs").exists()
    assert logging.getLogger(LOGGER_NAME).handlers == []
