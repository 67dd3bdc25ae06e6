from __future__ import annotations

import uvicorn

from .config import settings


def main() -> None:
    uvicorn.run("activitylog.main:app", host=settings.host, port=settings.port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
