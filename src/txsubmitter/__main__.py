import uvicorn

from txsubmitter.config import cfg
from txsubmitter.logging_config import setup_logging


def main():
    setup_logging()
    service = cfg.get("service", {})
    uvicorn.run(
        "txsubmitter.app:create_app",
        factory=True,
        host=service.get("host", "0.0.0.0"),
        port=int(service.get("port", 8000)),
        lifespan="on",
        log_config=None,
    )


if __name__ == "__main__":
    main()
