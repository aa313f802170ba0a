import uvicorn

from educonnect.config import settings

if __name__ == "__main__":
    uvicorn.run("educonnect.main:app", host="0.0.0.0", port=8000, reload=settings.LOG_LEVEL.upper() == "DEBUG")
