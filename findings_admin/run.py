#!/usr/bin/env python3
"""
Runner for Finding Override Service
===================================

Usage:
    DATABASE_URL=sqlite:///./overrides.db python -m findings_admin.run

Environment:
- HOST / PORT: bind address (default 0.0.0.0:8000)
- RELOAD: "true" to auto-reload on code changes
"""

import os

import uvicorn


def main() -> None:
    port = int(os.environ.get("PORT", "8000"))
    if not os.environ.get("DATABASE_URL"):
        print("DATABASE_URL is not set; /api/admin/* will answer 503 until it is.")
    print(f"Admin API: http://localhost:{port}/api/admin/findings")
    print(f"API docs:  http://localhost:{port}/docs")

    uvicorn.run(
        "findings_admin.api:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )


if __name__ == "__main__":
    main()
