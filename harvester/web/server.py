from __future__ import annotations
from fastapi import FastAPI
from datetime import datetime, timezone
from typing import Any, Callable, Dict
import resource
import sys
import time

import uvicorn

START_TIME = time.monotonic()


def memory_usage() -> Dict[str, int]:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is KiB on Linux, bytes on macOS
    max_rss = usage.ru_maxrss if sys.platform == 'darwin' else usage.ru_maxrss * 1024
    return {'maxRss': max_rss}


def create_app(status_provider: Callable[[], Dict[str, Any]]) -> FastAPI:
    """Liveness app. `status_provider` returns at least {active, instanceType}."""
    app = FastAPI(title="Job Feed Harvester")

    @app.get("/health")
    def health():
        status = status_provider()
        return {
            "status": "ok",
            "active": bool(status.get("active")),
            "instanceType": status.get("instanceType"),
            "scraping": bool(status.get("scraping")),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - START_TIME, 3),
            "memory": memory_usage(),
        }

    return app


def build_server(app: FastAPI, host: str, port: int) -> uvicorn.Server:
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    return uvicorn.Server(config)


if __name__ == "__main__":
    import os
    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run(create_app(lambda: {"active": False, "instanceType": None}), host="127.0.0.1", port=port)
