import logging

from aruco_detector.logging_utils import CameraNameFilter, setup_logger


def test_setup_logger_attaches_once(tmp_path):
    log_path = tmp_path / "cam.log"
    logger = setup_logger("logcam", logging.DEBUG, str(log_path))
    assert logger.name == "aruco_detector.logcam"
    assert logger.level == logging.DEBUG
    n = len(logger.handlers)
    assert n == 2

    again = setup_logger("logcam", logging.WARNING)
    assert again is logger
    assert len(again.handlers) == n
    assert again.level == logging.WARNING

    logger.warning("marker %d lost", 5)
    for h in logger.handlers:
        h.flush()
    text = log_path.read_text()
    assert "[logcam]" in text
    assert "marker 5 lost" in text

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


def test_camera_filter_keeps_existing_field():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    record.camera = "other"
    assert CameraNameFilter("cam").filter(record)
    assert record.camera == "other"

    fresh = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    CameraNameFilter("cam").filter(fresh)
    assert fresh.camera == "cam"


def test_setup_logger_adds_file_log_on_later_call(tmp_path):
    logger = setup_logger("latecam")
    assert not any(isinstance(h, logging.FileHandler) for h in logger.handlers)

    log_path = tmp_path / "late.log"
    setup_logger("latecam", log_path=str(log_path))
    setup_logger("latecam", log_path=str(log_path))
    file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1

    logger.info("frame source closed")
    file_handlers[0].flush()
    assert "frame source closed" in log_path.read_text()

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
