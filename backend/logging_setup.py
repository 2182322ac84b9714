import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure simple logging format"""
    logging.basicConfig(
        format="%(asctime)s %(levelname)-4s %(name)s : %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    # Route uvicorn through our handler; requests are logged by the app middleware
    for name in ["uvicorn", "uvicorn.error", "fastapi"]:
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True

    logging.getLogger("uvicorn.access").handlers.clear()
    logging.getLogger("uvicorn.access").propagate = False

    # passlib warns about bcrypt's version attribute on every import
    logging.getLogger("passlib").setLevel(logging.ERROR)
