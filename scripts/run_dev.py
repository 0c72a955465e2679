#!/usr/bin/env python3
"""
Development server runner for MemeTrace API
Includes auto-reload, logging, and environment checking
"""

import os
import sys
import uvicorn
from pathlib import Path

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

SECRET_VARS = {"GOOGLE_AI_API_KEY", "DATASET_DB_DSN"}

def check_environment():
    """Check if all required environment variables are set."""
    required_vars = [
        "GOOGLE_AI_API_KEY",
        "DATASET_DB_DSN",
    ]

    optional_vars = [
        "GEMINI_MODEL",
        "STAGE_TIMEOUT_SECONDS",
        "DATASET_TABLE",
        "DATASET_MAX_RECORDS",
        "API_HOST",
        "API_PORT",
        "DEBUG",
        "LOG_LEVEL",
    ]

    missing_vars = [var for var in required_vars if not os.getenv(var)]

    if missing_vars:
        print(f"Missing required environment variables: {', '.join(missing_vars)}")
        print("Please check your .env file or environment configuration.")
        return False

    print("Required environment variables found")

    print("\nConfiguration:")
    for var in required_vars + optional_vars:
        value = os.getenv(var, "Not set")
        if var in SECRET_VARS and value != "Not set":
            # Don't show credentials
            value = f"{value[:8]}..." if len(value) > 8 else "***"
        print(f"  {var}: {value}")

    return True

def check_dependencies():
    """Check if all required dependencies are available."""
    required_modules = [
        "fastapi",
        "uvicorn",
        "multipart",  # python-multipart, needed for uploads
        "psycopg2",
        "PIL",  # Pillow imports as PIL
        "google.genai",
        "pydantic",
        "structlog"
    ]

    missing_modules = []
    for module in required_modules:
        try:
            __import__(module)
        except ImportError:
            missing_modules.append(module)

    if missing_modules:
        print(f"Missing required Python modules: {', '.join(missing_modules)}")
        print("Please run: pip install -e .")
        return False

    print("All required dependencies found")
    return True

def main():
    """Main entry point for development server."""
    print("MemeTrace - Development Server")
    print("=" * 50)

    if not check_environment():
        sys.exit(1)

    if not check_dependencies():
        sys.exit(1)

    # Test database connection
    from memetrace.core.database import check_database_connection
    if check_database_connection():
        print("Database connection successful")
    else:
        print("Database connection failed")
        print("Please check DATASET_DB_DSN or run: python scripts/init_db.py")
        sys.exit(1)

    from memetrace import config

    print("\nStarting development server...")
    print(f"   Host: {config.API_HOST}")
    print(f"   Port: {config.API_PORT}")
    print(f"   Debug: {config.DEBUG}")
    print(f"   Docs: http://{config.API_HOST}:{config.API_PORT}/docs")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 50)

    try:
        uvicorn.run(
            "memetrace.main:app",
            host=config.API_HOST,
            port=config.API_PORT,
            reload=config.DEBUG,
            log_level="debug" if config.DEBUG else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")

if __name__ == "__main__":
    main()
