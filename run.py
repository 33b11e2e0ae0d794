#!/usr/bin/env python3
"""Run script for nptma."""

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "nptma.api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True
    )
