#!/usr/bin/env python3
"""
Lightning Address Zap Service - Entry Point

This script starts the FastAPI application using uvicorn.
"""

import uvicorn
from config import settings

if __name__ == "__main__":
    # Run the FastAPI application
    uvicorn.run(
        "lnaddress.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level="info"
    )
