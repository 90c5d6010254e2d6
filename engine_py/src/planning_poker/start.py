#!/usr/bin/env python3
"""Startup script for the planning poker backend"""

import logging

import uvicorn

from .config import load_settings


def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )

    print(f"🚀 Starting Planning Poker backend on {settings.host}:{settings.port}")
    print(f"📍 Health check available at: http://{settings.host}:{settings.port}/health")
    print(f"🔌 WebSocket endpoint: ws://{settings.host}:{settings.port}/ws")

    uvicorn.run(
        "planning_poker.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
