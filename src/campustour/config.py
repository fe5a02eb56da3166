import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL: str = os.environ.get("DATABASE_URL", "")
OLLAMA_URL: str = os.environ.get("OLLAMA_URL", "http://localhost:11434")
OLLAMA_MODEL: str = os.environ.get("OLLAMA_MODEL", "llama3")
REPORT_DIR: str = os.environ.get("REPORT_DIR", "docs")
LOG_DIR: str = os.environ.get("LOG_DIR", "logs")
