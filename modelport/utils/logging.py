import logging
def get_logger(name: str = "modelport", level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(levelname)s %(message)s")
    return logging.getLogger(name)
