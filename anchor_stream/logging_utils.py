import logging


LOG_FORMAT = "%(asctime)s %(levelname)s [%(camera)s] %(threadName)s %(name)s: %(message)s"


class CameraNameFilter(logging.Filter):
    def __init__(self, camera_name: str):
        super().__init__()
        self.camera_name = camera_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.camera = self.camera_name
        return True


def setup_logger(camera_name: str, level: int = logging.INFO) -> logging.Logger:
    """Per-camera logger; components log through its children."""
    logger = logging.getLogger(f"anchor_stream.{camera_name}")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(CameraNameFilter(camera_name))
        logger.addHandler(handler)

    return logger


def child_logger(parent: logging.Logger, component: str) -> logging.Logger:
    return parent.getChild(component)


def add_file_handler(logger: logging.Logger, camera_name: str, log_path: str) -> logging.FileHandler:
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CameraNameFilter(camera_name))
    logger.addHandler(handler)
    return handler
