#!/usr/bin/env python3
"""
Local development server for the idea recommender API.
"""

import os
import sys
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

# Add src to Python path
current_dir = Path(__file__).parent
src_dir = current_dir / "src"
sys.path.insert(0, str(src_dir))

os.environ.setdefault('ENVIRONMENT', 'development')
# Set SUPABASE_PROJECT_REF + SUPABASE_DB_PASSWORD, or DATABASE_URL for a local database
if not os.getenv('DATABASE_URL') and (not os.getenv('SUPABASE_PROJECT_REF') or not os.getenv('SUPABASE_DB_PASSWORD')):
    print("WARNING: database configuration missing!")
    print("Please set SUPABASE_PROJECT_REF and SUPABASE_DB_PASSWORD, or DATABASE_URL")
    print("Example: DATABASE_URL=sqlite:///./dev.db python dev_server.py")

if __name__ == "__main__":
    import uvicorn

    print("Starting idea recommender API")
    print("Docs: http://localhost:8000/docs")
    print("Health Check: http://localhost:8000/health")
    print("Press Ctrl+C to stop\n")

    uvicorn.run(
        "idea_recommender.api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=True,
        log_level="info"
    )
