import os

import uvicorn


def main():
    uvicorn.run(
        "genflow.main:app",
        host=os.getenv("GENFLOW_HOST", "127.0.0.1"),
        port=int(os.getenv("GENFLOW_PORT", "8000")),
        reload=os.getenv("GENFLOW_RELOAD", "false").lower() == "true",
    )
