"""Main FastAPI application entry point for Lecture Chat.

Starts the HTTP server; the application itself lives in
``lecturechat.api.main``.
"""

from lecturechat.api.main import app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("lecturechat.main:app", host="127.0.0.1", port=8030, reload=True)
