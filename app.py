import os

# Re-exported so `uvicorn app:application` works from the repo root
from backend.app import application  # noqa: F401

# For dev convenience: run FastAPI with hot-reload
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("backend.app:application", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
