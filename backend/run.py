import os
import uvicorn

from adsteward.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    # Job queues live in-process: one worker process keeps a single dispatcher
    uvicorn.run(
        "adsteward.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        workers=1,
    )
