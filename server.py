"""Turnpilot control plane server entry point."""

import os

import uvicorn

if __name__ == "__main__":
    # 127.0.0.1 keeps the diagnostics surface local; use 0.0.0.0 to expose it.
    host = os.getenv("TURNPILOT_API_HOST", "127.0.0.1")
    port = int(os.getenv("TURNPILOT_API_PORT", 8000))
    debug = os.getenv("TURNPILOT_DEBUG", "false").lower() == "true"

    print(f"Starting Turnpilot control plane on {host}:{port}")
    uvicorn.run("turnpilot.main:app", host=host, port=port, reload=debug)
