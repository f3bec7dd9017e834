import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables from .env file before any backend client is built.
print("\n" + "=" * 60)
print("🔧 LOADING ENVIRONMENT CONFIGURATION")
print("=" * 60)

env_path = Path(__file__).parent.parent / ".env"
print(f"Looking for .env file at: {env_path}")

if env_path.exists():
    load_dotenv(dotenv_path=env_path, override=True)
    print("✓ .env file loaded successfully")
    for key in ("REPLICATE_API_TOKEN", "GEMINI_API_KEY"):
        value = os.environ.get(key)
        if value:
            print(f"✓ {key} loaded: {value[:8]}...")
        else:
            print(f"⚠ {key} not found in .env file")
else:
    print(f"⚠ .env file not found at: {env_path}")
    print("  Create it with: REPLICATE_API_TOKEN=... and GEMINI_API_KEY=...")

print("=" * 60 + "\n")

from thumbforge.api.v1.routes import router as api_v1_router  # noqa: E402

logging.basicConfig(
    level=os.environ.get("THUMBFORGE_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app() -> FastAPI:
    """
    Application factory for the Thumbforge API.

    Keeping this as a separate function makes it easier to extend
    configuration and testing later.
    """
    app = FastAPI(
        title="Thumbforge API",
        version="0.1.0",
        description="Thumbnail generation with backend routing, quality selection and safe text layout.",
    )

    # Infrastructure-level health check (non-versioned) primarily for ops.
    @app.get("/health", tags=["health"])
    async def root_health_check() -> dict:
        """Simple root health check endpoint."""
        return {"status": "ok"}

    # Public, versioned API routes.
    app.include_router(api_v1_router)

    return app


app = create_app()
