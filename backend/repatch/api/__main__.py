"""Run the HTTP API: python -m repatch.api"""
import uvicorn

from repatch.config import settings


def main() -> None:
    server = settings.server
    uvicorn.run(
        "repatch.api.app:app",
        host=server.host,
        port=server.port,
        log_level=server.log_level,
        reload=False,
    )


if __name__ == "__main__":
    main()
